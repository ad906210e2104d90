"""Database-backed job scheduler: timed process jobs and stored-procedure monitors."""

__version__ = "0.1.0"
