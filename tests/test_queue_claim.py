from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

from sqlalchemy import select, text
from sqlalchemy.dialects import mssql, postgresql
from sqlalchemy.exc import OperationalError

from eventmail.db import Base, StoreSessionProvider, make_engine
from eventmail.db.models import SpParameter, StoredProcedureEvent, TimeEvent
from eventmail.db.repo.queue_repo import QueueRepo, due_rows_query
from eventmail.errors import StoreUnavailable


NOW = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


class QueueClaimTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        url = f"sqlite:///{(Path(self._td.name) / 'data' / 'events.db').as_posix()}"
        self.engine = make_engine(url)
        Base.metadata.create_all(self.engine)
        self.sessions = StoreSessionProvider(self.engine)
        self.repo = QueueRepo()

    def tearDown(self) -> None:
        self.engine.dispose()
        self._td.cleanup()

    def _add_time_event(self, name: str, due: datetime, **kwargs) -> int:
        with self.sessions.open() as s:
            row = TimeEvent(
                job_name=name,
                file_path="/bin/true",
                arguments=kwargs.pop("arguments", ""),
                enabled=kwargs.pop("enabled", True),
                interval_minutes=kwargs.pop("interval_minutes", 5),
                schedule_anchor_utc=kwargs.pop("schedule_anchor_utc", None),
                max_retries=0,
                retry_interval_seconds=0,
                next_run_time=due,
            )
            s.add(row)
            s.flush()
            return int(row.id)

    def _add_procedure_event(self, name: str, due: datetime, **kwargs) -> int:
        with self.sessions.open() as s:
            row = StoredProcedureEvent(
                stored_proc_name=name,
                database_name=kwargs.pop("database_name", None),
                poll_interval_seconds=kwargs.pop("poll_interval_seconds", 30),
                fire_on_any_true=True,
                email_group_alias="ops@example.com",
                enabled=kwargs.pop("enabled", True),
                next_run_time=due,
            )
            s.add(row)
            s.flush()
            return int(row.id)

    def _claim_time(self, now: datetime = NOW, batch_size: int = 10):
        with self.sessions.open() as s:
            return self.repo.claim_due_time_events(s, batch_size=batch_size, now=now)

    def test_claim_advances_row_and_is_not_repeated(self) -> None:
        row_id = self._add_time_event("nightly", NOW - timedelta(seconds=30), schedule_anchor_utc=NOW - timedelta(hours=1))

        first = self._claim_time()
        self.assertEqual([j.id for j in first], [row_id])
        self.assertEqual(first[0].name, "nightly")
        self.assertEqual(first[0].claimed_at, NOW)
        self.assertGreater(first[0].next_run_time, NOW)

        second = self._claim_time()
        self.assertEqual(second, [])

        with self.sessions.open() as s:
            row = s.get(TimeEvent, row_id)
            self.assertEqual(row.last_run_time, NOW)
            self.assertEqual(row.next_run_time, NOW + timedelta(minutes=5))
            self.assertEqual(row.next_run_time.tzinfo, timezone.utc)

    def test_on_time_claim_keeps_cadence(self) -> None:
        due = NOW - timedelta(milliseconds=200)
        row_id = self._add_time_event("cadence", due)
        jobs = self._claim_time()
        self.assertEqual(len(jobs), 1)
        with self.sessions.open() as s:
            self.assertEqual(s.get(TimeEvent, row_id).next_run_time, due + timedelta(minutes=5))

    def test_disabled_and_future_rows_are_not_claimed(self) -> None:
        self._add_time_event("off", NOW - timedelta(minutes=1), enabled=False)
        self._add_time_event("later", NOW + timedelta(minutes=1))
        self.assertEqual(self._claim_time(), [])

    def test_claims_are_ordered_and_limited(self) -> None:
        c = self._add_time_event("c", NOW - timedelta(minutes=1))
        a = self._add_time_event("a", NOW - timedelta(minutes=3))
        b = self._add_time_event("b", NOW - timedelta(minutes=2))

        jobs = self._claim_time(batch_size=2)
        self.assertEqual([j.id for j in jobs], [a, b])
        rest = self._claim_time(batch_size=2)
        self.assertEqual([j.id for j in rest], [c])

    def test_guarded_advance_rejects_row_claimed_elsewhere(self) -> None:
        row_id = self._add_time_event("race", NOW - timedelta(minutes=1))
        stale_session = self.sessions._Session()
        try:
            stale = stale_session.execute(select(TimeEvent).where(TimeEvent.id == row_id)).scalar_one()
            stale_session.commit()

            self.assertEqual(len(self._claim_time()), 1)

            lost = self.repo._advance_time_event(stale_session, stale, NOW)
            stale_session.commit()
            self.assertIsNone(lost)
        finally:
            stale_session.close()

        with self.sessions.open() as s:
            self.assertEqual(s.get(TimeEvent, row_id).next_run_time, NOW + timedelta(minutes=5))

    def test_row_written_outside_the_orm_is_claimed(self) -> None:
        with self.sessions.open() as s:
            s.execute(
                text(
                    'INSERT INTO "Event_Mail_Service_Time_Events" '
                    '("Job_Name", "File_Path", "Enabled", "Interval_Minutes", "Max_Retries", '
                    '"Retry_Interval_Seconds", "Next_Run_Time") '
                    "VALUES ('legacy', '/bin/true', 1, 5, 0, 0, '2026-10-18 08:59:00')"
                )
            )
            s.execute(
                text(
                    'INSERT INTO "Event_Mail_Service_Stored_Procedure_Events" '
                    '("Stored_Proc_Name", "Poll_Interval_Seconds", "Fire_On_Any_True", '
                    '"Email_Group_Alias", "Enabled", "Next_Run_Time") '
                    "VALUES ('dbo.Legacy', 60, 1, 'ops@example.com', 1, '2026-10-18 08:59:30')"
                )
            )

        jobs = self._claim_time()
        self.assertEqual([j.name for j in jobs], ["legacy"])
        self.assertEqual(jobs[0].next_run_time, NOW + timedelta(minutes=4))
        self.assertEqual(self._claim_time(), [])
        with self.sessions.open() as s:
            stored = s.execute(select(TimeEvent.next_run_time)).scalar_one()
            procs = self.repo.claim_due_procedure_events(s, batch_size=10, now=NOW)
        self.assertEqual(stored, NOW + timedelta(minutes=4))
        self.assertEqual([p.stored_proc_name for p in procs], ["dbo.Legacy"])
        self.assertEqual(procs[0].next_run_time, NOW + timedelta(seconds=60))

    def test_late_row_snaps_to_its_anchor(self) -> None:
        row_id = self._add_time_event(
            "anchored",
            NOW - timedelta(minutes=12),
            schedule_anchor_utc=NOW - timedelta(minutes=62),
        )
        jobs = self._claim_time()
        self.assertEqual(jobs[0].next_run_time, NOW + timedelta(minutes=3))
        with self.sessions.open() as s:
            self.assertEqual(s.get(TimeEvent, row_id).next_run_time, NOW + timedelta(minutes=3))

    def test_claim_query_skips_locked_rows(self) -> None:
        for model in (TimeEvent, StoredProcedureEvent):
            stmt = due_rows_query(model, now=NOW, batch_size=5)
            ms = str(stmt.compile(dialect=mssql.dialect()))
            self.assertIn(f"[{model.__tablename__}] WITH (UPDLOCK, ROWLOCK, READPAST)", ms)
            pg = str(stmt.compile(dialect=postgresql.dialect()))
            self.assertIn("FOR UPDATE SKIP LOCKED", pg)
            self.assertNotIn("READPAST", pg)

    def test_procedure_claim_reschedules_from_now(self) -> None:
        row_id = self._add_procedure_event("dbo.CheckQueue", NOW - timedelta(hours=2), poll_interval_seconds=45)
        with self.sessions.open() as s:
            jobs = self.repo.claim_due_procedure_events(s, batch_size=10, now=NOW)
        self.assertEqual(len(jobs), 1)
        job = jobs[0]
        self.assertEqual(job.id, row_id)
        self.assertEqual(job.stored_proc_name, "dbo.CheckQueue")
        self.assertIsNone(job.database_name)
        self.assertTrue(job.fire_on_any_true)
        self.assertEqual(job.next_run_time, NOW + timedelta(seconds=45))

        with self.sessions.open() as s:
            again = self.repo.claim_due_procedure_events(s, batch_size=10, now=NOW + timedelta(seconds=10))
        self.assertEqual(again, [])

    def test_list_parameters_in_insertion_order(self) -> None:
        proc_id = self._add_procedure_event("dbo.P", NOW)
        with self.sessions.open() as s:
            s.add(SpParameter(stored_proc_id=proc_id, name="@Second", sql_db_type="int", value_int=2))
            s.add(SpParameter(stored_proc_id=proc_id, name="@First", sql_db_type="int", value_int=1))
        with self.sessions.open() as s:
            params = self.repo.list_parameters(s, proc_id)
        self.assertEqual([p.name for p in params], ["@Second", "@First"])

    def test_store_errors_surface_as_store_unavailable(self) -> None:
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
        with self.assertRaises(StoreUnavailable):
            self.repo.claim_due_time_events(session, batch_size=10, now=NOW)
        session.rollback.assert_called_once()
        with self.assertRaises(StoreUnavailable):
            self.repo.claim_due_procedure_events(session, batch_size=10, now=NOW)


if __name__ == "__main__":
    unittest.main()
