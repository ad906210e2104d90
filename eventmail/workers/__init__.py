"""
Scheduler loops and the process host.

- event_loops.py: time-event and stored-procedure loops (claim, dispatch)
- scheduler_worker.py: APScheduler host and the `eventmail-worker` entry point
"""
