from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from eventmail.services.recurrence import as_utc, compute_next_poll, compute_next_run, drift_ms, effective_interval


T0 = datetime(2026, 10, 18, 8, 0, 0, tzinfo=timezone.utc)


class RecurrenceTests(unittest.TestCase):
    def test_late_claim_snaps_to_anchor_grid(self) -> None:
        nxt = compute_next_run(
            next_run_time=T0,
            base_time=T0 + timedelta(minutes=5, seconds=2),
            interval_minutes=5,
            schedule_anchor=T0,
        )
        self.assertEqual(nxt, T0 + timedelta(minutes=10))

    def test_small_drift_keeps_cadence(self) -> None:
        t1 = T0 + timedelta(minutes=35)
        nxt = compute_next_run(
            next_run_time=t1,
            base_time=t1 + timedelta(milliseconds=100),
            interval_minutes=5,
            schedule_anchor=T0,
        )
        self.assertEqual(nxt, t1 + timedelta(minutes=5))

    def test_drift_exactly_at_tolerance_keeps_cadence(self) -> None:
        nxt = compute_next_run(
            next_run_time=T0,
            base_time=T0 + timedelta(milliseconds=500),
            interval_minutes=5,
            schedule_anchor=T0 - timedelta(minutes=1),
        )
        self.assertEqual(nxt, T0 + timedelta(minutes=5))

    def test_early_claim_snaps_forward(self) -> None:
        nxt = compute_next_run(
            next_run_time=T0 + timedelta(minutes=10),
            base_time=T0 + timedelta(minutes=7),
            interval_minutes=5,
            schedule_anchor=T0,
        )
        self.assertEqual(nxt, T0 + timedelta(minutes=10))

    def test_missing_anchor_uses_previous_due_time(self) -> None:
        nxt = compute_next_run(
            next_run_time=T0,
            base_time=T0 + timedelta(minutes=12),
            interval_minutes=5,
            schedule_anchor=None,
        )
        self.assertEqual(nxt, T0 + timedelta(minutes=15))

    def test_default_interval_is_five_minutes(self) -> None:
        self.assertEqual(effective_interval(None), timedelta(minutes=5))
        self.assertEqual(effective_interval(0), timedelta(minutes=5))
        self.assertEqual(effective_interval(-3), timedelta(minutes=5))
        self.assertEqual(effective_interval(15), timedelta(minutes=15))
        nxt = compute_next_run(next_run_time=T0, base_time=T0, interval_minutes=None, schedule_anchor=None)
        self.assertEqual(nxt, T0 + timedelta(minutes=5))

    def test_result_is_always_after_base_time(self) -> None:
        for late_seconds in (1, 59, 299, 300, 301, 3600):
            base = T0 + timedelta(seconds=late_seconds)
            nxt = compute_next_run(next_run_time=T0, base_time=base, interval_minutes=5, schedule_anchor=T0)
            self.assertGreater(nxt, base)
            self.assertEqual((nxt - T0) % timedelta(minutes=5), timedelta(0))

    def test_drift_ms_is_absolute(self) -> None:
        self.assertEqual(drift_ms(T0, T0 + timedelta(seconds=1)), 1000.0)
        self.assertEqual(drift_ms(T0 + timedelta(seconds=1), T0), 1000.0)

    def test_next_poll(self) -> None:
        self.assertEqual(compute_next_poll(base_time=T0, poll_interval_seconds=30), T0 + timedelta(seconds=30))
        self.assertEqual(compute_next_poll(base_time=T0, poll_interval_seconds=0), T0 + timedelta(seconds=1))

    def test_as_utc(self) -> None:
        naive = datetime(2026, 10, 18, 8, 0, 0)
        self.assertEqual(as_utc(naive), T0)
        shifted = datetime(2026, 10, 18, 10, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(as_utc(shifted).hour, 8)
        self.assertEqual(as_utc(shifted).tzinfo, timezone.utc)


if __name__ == "__main__":
    unittest.main()
