from eventmail.db.repo.queue_repo import ClaimedProcedureJob, ClaimedTimeJob, QueueRepo

__all__ = [
    "QueueRepo",
    "ClaimedTimeJob",
    "ClaimedProcedureJob",
]
