from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from eventmail.config import Settings, load_settings, redact_database_url
from eventmail.db.repo.queue_repo import QueueRepo
from eventmail.db.schema import ensure_schema
from eventmail.db.session import StoreSessionProvider
from eventmail.errors import ConfigurationError, StoreUnavailable
from eventmail.logs import configure_logging
from eventmail.services.notifiers import Notifier, build_notifier
from eventmail.services.parameter_binder import ProcedureInvoker, invoker_for_dialect
from eventmail.services.process_executor import ProcessExecutor
from eventmail.workers.event_loops import EventLoop, ProcedureEventLoop, TimeEventLoop


logger = logging.getLogger("eventmail.worker")


class EventMailWorker:
    """
    Host for both loops. Each loop is an APScheduler interval job with
    max_instances=1, so ticks of one loop never overlap; the loops themselves
    run concurrently and share nothing but the store.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        sessions: StoreSessionProvider | None = None,
        notifier: Notifier | None = None,
        executor: ProcessExecutor | None = None,
        invoker: ProcedureInvoker | None = None,
    ) -> None:
        self.settings = settings
        self.sessions = sessions or StoreSessionProvider.from_url(settings.database_url)
        polling = settings.polling
        repo = QueueRepo(drift_tolerance_ms=polling.drift_tolerance_ms)

        self.loops: list[EventLoop] = [
            TimeEventLoop(
                sessions=self.sessions,
                repo=repo,
                tick_seconds=polling.time_events_seconds,
                batch_size=polling.batch_size,
                executor=executor,
            )
        ]

        if invoker is None:
            try:
                invoker = invoker_for_dialect(self.sessions.dialect_name)
            except ConfigurationError as e:
                logger.warning("Stored procedure monitor disabled: %s", e)
        if invoker is not None:
            self.loops.append(
                ProcedureEventLoop(
                    sessions=self.sessions,
                    repo=repo,
                    tick_seconds=polling.stored_procedures_seconds,
                    batch_size=polling.batch_size,
                    notifier=notifier or build_notifier(settings.email),
                    invoker=invoker,
                )
            )

        self.scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": None,
            },
        )
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        now = datetime.now(timezone.utc)
        for loop in self.loops:
            self.scheduler.add_job(
                loop.tick,
                trigger=IntervalTrigger(seconds=loop.tick_seconds, timezone=timezone.utc),
                id=loop.name,
                name=loop.name,
                next_run_time=now,
            )
        self.scheduler.start()
        self._started = True
        logger.info(
            "worker started loops=%s db=%s",
            ",".join(f"{l.name}@{l.tick_seconds}s" for l in self.loops),
            redact_database_url(self.settings.database_url),
        )

    def stop(self, *, wait: bool = True) -> None:
        for loop in self.loops:
            loop.cancel.cancel()
        if self._started:
            self.scheduler.shutdown(wait=wait)
            self._started = False
        logger.info("worker stopped")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="eventmail-worker", description="Run the time-event and stored-procedure loops.")
    ap.add_argument("--config", type=Path, default=None, help="YAML settings file (default: $EVENT_MAIL_CONFIG)")
    ap.add_argument("--no-migrate", action="store_true", help="fail instead of running alembic when tables are missing")
    return ap.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(settings.logging)

    try:
        worker = EventMailWorker(settings)
        ensure_schema(worker.sessions.engine, migrate=not args.no_migrate)
    except ConfigurationError as e:
        logger.error("startup failed: %s", e)
        return 2
    except StoreUnavailable as e:
        # Not fatal: every tick retries the store.
        logger.warning("store unavailable at startup: %s", e)

    stop = threading.Event()

    def _handle(signum, _frame) -> None:
        logger.info("signal %s received, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    worker.start()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        worker.stop(wait=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
