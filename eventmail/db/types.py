from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.dialects.mssql import DATETIME2
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Instant column stored as naive UTC:
    - SQL Server: DATETIME2(7)
    - Others: DATETIME
    Aware values are converted to UTC on bind; results come back tz-aware UTC.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "mssql":
            return dialect.type_descriptor(DATETIME2(precision=7))
        return dialect.type_descriptor(DateTime())

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return None
        if not isinstance(value, datetime):
            raise TypeError(f"UTCDateTime expects datetime, got {type(value).__name__}")
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
