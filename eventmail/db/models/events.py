from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from eventmail.db.base import Base
from eventmail.db.types import UTCDateTime

# Column names match the legacy tables so an existing store can be reused as-is.


class TimeEvent(Base):
    __tablename__ = "Event_Mail_Service_Time_Events"

    id: Mapped[int] = mapped_column("ID", Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column("Job_Name", String(200), nullable=False)
    file_path: Mapped[str] = mapped_column("File_Path", String(1024), nullable=False)
    arguments: Mapped[Optional[str]] = mapped_column("Arguments", String(4000), nullable=True)
    working_directory: Mapped[Optional[str]] = mapped_column("Working_Directory", String(1024), nullable=True)
    enabled: Mapped[bool] = mapped_column("Enabled", Boolean, nullable=False, default=True)
    interval_minutes: Mapped[Optional[int]] = mapped_column("Interval_Minutes", Integer, nullable=True)
    schedule_anchor_utc: Mapped[Optional[datetime]] = mapped_column("Schedule_Anchor_Utc", UTCDateTime(), nullable=True)
    max_retries: Mapped[int] = mapped_column("Max_Retries", Integer, nullable=False, default=0)
    retry_interval_seconds: Mapped[int] = mapped_column("Retry_Interval_Seconds", Integer, nullable=False, default=0)
    next_run_time: Mapped[datetime] = mapped_column("Next_Run_Time", UTCDateTime(), nullable=False)
    last_run_time: Mapped[Optional[datetime]] = mapped_column("Last_Run_Time", UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_time_events_due", "Enabled", "Next_Run_Time"),
    )


class StoredProcedureEvent(Base):
    __tablename__ = "Event_Mail_Service_Stored_Procedure_Events"

    id: Mapped[int] = mapped_column("ID", Integer, primary_key=True, autoincrement=True)
    stored_proc_name: Mapped[str] = mapped_column("Stored_Proc_Name", String(256), nullable=False)
    database_name: Mapped[Optional[str]] = mapped_column("Database_Name", String(128), nullable=True)
    poll_interval_seconds: Mapped[int] = mapped_column("Poll_Interval_Seconds", Integer, nullable=False, default=300)
    fire_on_any_true: Mapped[bool] = mapped_column("Fire_On_Any_True", Boolean, nullable=False, default=True)
    email_group_alias: Mapped[str] = mapped_column("Email_Group_Alias", String(1024), nullable=False)
    enabled: Mapped[bool] = mapped_column("Enabled", Boolean, nullable=False, default=True)
    next_run_time: Mapped[datetime] = mapped_column("Next_Run_Time", UTCDateTime(), nullable=False)
    last_run_time: Mapped[Optional[datetime]] = mapped_column("Last_Run_Time", UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_sp_events_due", "Enabled", "Next_Run_Time"),
    )


class SpParameter(Base):
    __tablename__ = "SpParameters"

    id: Mapped[int] = mapped_column("ID", Integer, primary_key=True, autoincrement=True)
    stored_proc_id: Mapped[int] = mapped_column(
        "Stored_Proc_ID",
        Integer,
        ForeignKey("Event_Mail_Service_Stored_Procedure_Events.ID"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column("Stored_Proc_Param", String(128), nullable=False)
    sql_db_type: Mapped[str] = mapped_column("Sql_Db_Type", String(32), nullable=False)
    direction: Mapped[Optional[str]] = mapped_column("Direction", String(16), nullable=True)
    value_nvarchar: Mapped[Optional[str]] = mapped_column("Value_NVarChar", Text, nullable=True)
    value_int: Mapped[Optional[int]] = mapped_column("Value_Int", Integer, nullable=True)
    value_decimal: Mapped[Optional[Decimal]] = mapped_column("Value_Decimal", Numeric(38, 10), nullable=True)
    value_datetime2: Mapped[Optional[datetime]] = mapped_column("Value_DateTime2", DateTime, nullable=True)
    value_bit: Mapped[Optional[bool]] = mapped_column("Value_Bit", Boolean, nullable=True)

    __table_args__ = (
        Index("idx_sp_parameters_proc", "Stored_Proc_ID", "ID"),
    )
