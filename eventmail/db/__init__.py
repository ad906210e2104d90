from eventmail.db.base import Base
from eventmail.db.engine import make_engine
from eventmail.db.session import StoreSessionProvider

__all__ = [
    "Base",
    "StoreSessionProvider",
    "make_engine",
]
