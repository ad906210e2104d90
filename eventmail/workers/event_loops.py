from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from eventmail.cancellation import CancellationToken
from eventmail.db.repo.queue_repo import ClaimedProcedureJob, ClaimedTimeJob, QueueRepo
from eventmail.db.session import StoreSessionProvider
from eventmail.errors import ActionExecutionFailure, Cancelled, NotificationFailure
from eventmail.services.alert_composer import compose_and_send
from eventmail.services.notifiers import Notifier
from eventmail.services.parameter_binder import (
    ParameterBinder,
    ProcedureInvoker,
    ProcedureResult,
    invoker_for_dialect,
    qualified_procedure_name,
)
from eventmail.services.process_executor import ProcessExecutor
from eventmail.services.recurrence import utc_now


IDLE = "idle"
CLAIMING = "claiming"
DISPATCHING = "dispatching"


class EventLoop:
    """
    One scheduler loop: every tick claims a batch of due rows and dispatches them
    one at a time, earliest due first.

    `tick` never raises. Failures are logged at the tick boundary (whole tick)
    or per row (that row only); cancellation abandons the tick quietly.
    """

    name = "event_loop"

    def __init__(
        self,
        *,
        sessions: StoreSessionProvider,
        repo: QueueRepo,
        tick_seconds: float,
        batch_size: int = 10,
        cancel: CancellationToken | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.sessions = sessions
        self.repo = repo
        self.tick_seconds = tick_seconds
        self.batch_size = batch_size
        self.cancel = cancel or CancellationToken()
        self.clock = clock
        self.state = IDLE
        self.logger = logging.getLogger(f"eventmail.{self.name}")

    def tick(self) -> int:
        if self.cancel.is_cancelled:
            return 0
        try:
            return self._tick()
        except Cancelled:
            self.logger.info("%s tick abandoned: cancelled", self.name)
            return 0
        except Exception:
            self.logger.exception("%s failure", self.name)
            return 0
        finally:
            self.state = IDLE

    def _tick(self) -> int:
        raise NotImplementedError


class TimeEventLoop(EventLoop):
    name = "time_events"

    def __init__(self, *, executor: ProcessExecutor | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.executor = executor or ProcessExecutor()

    def _tick(self) -> int:
        self.cancel.raise_if_cancelled()
        self.state = CLAIMING
        with self.sessions.open() as session:
            jobs = self.repo.claim_due_time_events(session, batch_size=self.batch_size, now=self.clock())
        self.cancel.raise_if_cancelled()

        self.state = DISPATCHING
        for job in jobs:
            self.cancel.raise_if_cancelled()
            self._run_one(job)
        return len(jobs)

    def _run_one(self, job: ClaimedTimeJob) -> bool:
        self.logger.debug("Job %s (%s) claimed; next run %s", job.id, job.name, job.next_run_time.isoformat())
        try:
            result = self.executor.run(
                job.file_path,
                job.arguments,
                job.working_directory,
                job.max_retries,
                job.retry_interval_seconds,
                self.cancel,
            )
        except Exception:
            self.logger.exception("Job %s (%s) dispatch failed", job.id, job.name)
            return False

        if not result.success:
            err = ActionExecutionFailure(
                f"job={job.id} name={job.name} attempts={result.attempts} exit_code={result.exit_code}"
            )
            self.logger.error("Job %s failed: %s | %s", job.id, err, result.stderr.strip())
            return False
        self.logger.info("Job %s OK: %s", job.id, result.stdout.strip())
        return True


class ProcedureEventLoop(EventLoop):
    name = "procedure_events"

    def __init__(
        self,
        *,
        notifier: Notifier,
        invoker: ProcedureInvoker | None = None,
        binder: ParameterBinder | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.notifier = notifier
        self.invoker = invoker or invoker_for_dialect(self.sessions.dialect_name)
        self.binder = binder or ParameterBinder(self.repo)

    def _tick(self) -> int:
        self.cancel.raise_if_cancelled()
        self.state = CLAIMING
        with self.sessions.open() as session:
            jobs = self.repo.claim_due_procedure_events(session, batch_size=self.batch_size, now=self.clock())

            self.state = DISPATCHING
            for job in jobs:
                self.cancel.raise_if_cancelled()
                self._run_one(session, job)
        return len(jobs)

    def _invoke(self, session: Session, job: ClaimedProcedureJob) -> ProcedureResult:
        parameters = self.binder.bind(session, job.id)
        name = qualified_procedure_name(job.stored_proc_name, job.database_name)
        result = self.invoker.invoke(session, name, parameters)
        session.commit()
        return result

    def _run_one(self, session: Session, job: ClaimedProcedureJob) -> bool:
        try:
            result = self._invoke(session, job)
        except Cancelled:
            raise
        except Exception as e:
            session.rollback()
            err = ActionExecutionFailure(f"procedure={job.stored_proc_name} id={job.id} error={e}")
            self.logger.error("%s", err)
            return False
        if result.outputs:
            self.logger.debug("Procedure %s outputs: %s", job.stored_proc_name, result.outputs)

        self.cancel.raise_if_cancelled()
        try:
            compose_and_send(
                job.stored_proc_name,
                result.rows,
                job.fire_on_any_true,
                job.email_group_alias,
                self.notifier,
            )
        except NotificationFailure as e:
            self.logger.error("%s", e)
            return False
        return True
