from eventmail.db.models.events import SpParameter, StoredProcedureEvent, TimeEvent

__all__ = [
    "TimeEvent",
    "StoredProcedureEvent",
    "SpParameter",
]
