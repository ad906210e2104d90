"""
Next-occurrence arithmetic for timed jobs.

Rows normally advance from their own previous due time so the cadence stays
phase-locked. When a claim happens later (or earlier) than the drift tolerance,
the row is re-snapped onto the grid defined by its schedule anchor instead of
compounding the delay.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

DEFAULT_INTERVAL_MINUTES = 5
DEFAULT_DRIFT_TOLERANCE_MS = 500
MIN_POLL_INTERVAL_SECONDS = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def effective_interval(interval_minutes: int | None) -> timedelta:
    if interval_minutes is None or int(interval_minutes) <= 0:
        return timedelta(minutes=DEFAULT_INTERVAL_MINUTES)
    return timedelta(minutes=int(interval_minutes))


def drift_ms(base_time: datetime, next_run_time: datetime) -> float:
    return abs((base_time - next_run_time) / timedelta(milliseconds=1))


def compute_next_run(
    *,
    next_run_time: datetime,
    base_time: datetime,
    interval_minutes: int | None,
    schedule_anchor: datetime | None,
    drift_tolerance_ms: int = DEFAULT_DRIFT_TOLERANCE_MS,
) -> datetime:
    interval = effective_interval(interval_minutes)
    if drift_ms(base_time, next_run_time) > drift_tolerance_ms:
        anchor = schedule_anchor if schedule_anchor is not None else next_run_time
        elapsed_intervals = (base_time - anchor) // interval
        return anchor + (elapsed_intervals + 1) * interval
    return next_run_time + interval


def compute_next_poll(*, base_time: datetime, poll_interval_seconds: int) -> datetime:
    return base_time + timedelta(seconds=max(int(poll_interval_seconds or 0), MIN_POLL_INTERVAL_SECONDS))
