from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select, select, true, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from eventmail.db.models.events import SpParameter, StoredProcedureEvent, TimeEvent
from eventmail.errors import StoreUnavailable
from eventmail.services.recurrence import (
    DEFAULT_DRIFT_TOLERANCE_MS,
    as_utc,
    compute_next_poll,
    compute_next_run,
)


@dataclass(frozen=True)
class ClaimedTimeJob:
    id: int
    name: str
    file_path: str
    arguments: str
    working_directory: str
    interval_minutes: int | None
    max_retries: int
    retry_interval_seconds: int
    claimed_at: datetime
    next_run_time: datetime


@dataclass(frozen=True)
class ClaimedProcedureJob:
    id: int
    stored_proc_name: str
    database_name: str | None
    poll_interval_seconds: int
    fire_on_any_true: bool
    email_group_alias: str
    claimed_at: datetime
    next_run_time: datetime


CLAIM_TABLE_HINT = "WITH (UPDLOCK, ROWLOCK, READPAST)"


def due_rows_query(model: type[TimeEvent] | type[StoredProcedureEvent], *, now: datetime, batch_size: int) -> Select:
    """
    Enabled rows due at `now`, earliest first, skipping rows locked by another
    claimant: FOR UPDATE SKIP LOCKED where supported, a READPAST table hint on
    SQL Server.
    """
    return (
        select(model)
        .with_hint(model.__table__, CLAIM_TABLE_HINT, "mssql")
        .where(model.enabled == true(), model.next_run_time <= now)
        .order_by(model.next_run_time.asc(), model.id.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )


class QueueRepo:
    """
    Claim protocol for both job tables.

    A claim selects due rows earliest-first, skipping rows another claimant has
    locked, and advances each one with an update guarded on the row still being
    due. A winning claim always moves Next_Run_Time past `now`, so the guard keeps
    claims exclusive on dialects without row locks (SQLite) and does not depend on
    the stored precision of Next_Run_Time.
    """

    def __init__(self, *, drift_tolerance_ms: int = DEFAULT_DRIFT_TOLERANCE_MS) -> None:
        self.drift_tolerance_ms = drift_tolerance_ms
        self._logger = logging.getLogger("eventmail.queue")

    def claim_due_time_events(self, session: Session, *, batch_size: int, now: datetime) -> list[ClaimedTimeJob]:
        now = as_utc(now)
        try:
            rows = list(
                session.execute(due_rows_query(TimeEvent, now=now, batch_size=batch_size)).scalars().all()
            )
            claimed: list[ClaimedTimeJob] = []
            for row in rows:
                job = self._advance_time_event(session, row, now)
                if job is not None:
                    claimed.append(job)
            session.commit()
            return claimed
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            raise StoreUnavailable(str(e)) from e

    def _advance_time_event(self, session: Session, row: TimeEvent, now: datetime) -> ClaimedTimeJob | None:
        nxt = compute_next_run(
            next_run_time=row.next_run_time,
            base_time=now,
            interval_minutes=row.interval_minutes,
            schedule_anchor=row.schedule_anchor_utc,
            drift_tolerance_ms=self.drift_tolerance_ms,
        )
        result = session.execute(
            update(TimeEvent)
            .where(TimeEvent.id == row.id, TimeEvent.enabled == true(), TimeEvent.next_run_time <= now)
            .values(last_run_time=now, next_run_time=nxt)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._logger.debug("time event %s already claimed elsewhere", row.id)
            return None
        return ClaimedTimeJob(
            id=int(row.id),
            name=str(row.job_name),
            file_path=str(row.file_path),
            arguments=str(row.arguments or ""),
            working_directory=str(row.working_directory or ""),
            interval_minutes=int(row.interval_minutes) if row.interval_minutes is not None else None,
            max_retries=int(row.max_retries or 0),
            retry_interval_seconds=int(row.retry_interval_seconds or 0),
            claimed_at=now,
            next_run_time=nxt,
        )

    def claim_due_procedure_events(
        self, session: Session, *, batch_size: int, now: datetime
    ) -> list[ClaimedProcedureJob]:
        now = as_utc(now)
        try:
            rows = list(
                session.execute(due_rows_query(StoredProcedureEvent, now=now, batch_size=batch_size)).scalars().all()
            )
            claimed: list[ClaimedProcedureJob] = []
            for row in rows:
                job = self._advance_procedure_event(session, row, now)
                if job is not None:
                    claimed.append(job)
            session.commit()
            return claimed
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            raise StoreUnavailable(str(e)) from e

    def _advance_procedure_event(
        self, session: Session, row: StoredProcedureEvent, now: datetime
    ) -> ClaimedProcedureJob | None:
        nxt = compute_next_poll(base_time=now, poll_interval_seconds=row.poll_interval_seconds)
        result = session.execute(
            update(StoredProcedureEvent)
            .where(
                StoredProcedureEvent.id == row.id,
                StoredProcedureEvent.enabled == true(),
                StoredProcedureEvent.next_run_time <= now,
            )
            .values(last_run_time=now, next_run_time=nxt)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._logger.debug("procedure event %s already claimed elsewhere", row.id)
            return None
        return ClaimedProcedureJob(
            id=int(row.id),
            stored_proc_name=str(row.stored_proc_name),
            database_name=str(row.database_name) if row.database_name else None,
            poll_interval_seconds=int(row.poll_interval_seconds or 0),
            fire_on_any_true=bool(row.fire_on_any_true),
            email_group_alias=str(row.email_group_alias or ""),
            claimed_at=now,
            next_run_time=nxt,
        )

    def list_parameters(self, session: Session, procedure_id: int) -> list[SpParameter]:
        try:
            return list(
                session.execute(
                    select(SpParameter)
                    .where(SpParameter.stored_proc_id == procedure_id)
                    .order_by(SpParameter.id.asc())
                ).scalars().all()
            )
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(str(e)) from e
