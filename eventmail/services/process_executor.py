"""
External-process execution with bounded retries.

Each attempt launches the command with stdout/stderr captured, waits for exit
(polling the cancellation token) and counts as successful only on exit code 0.
Failed attempts are retried after `retry_interval_seconds` until `max_retries`
extra attempts have been spent. Only the last attempt's streams are reported.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Callable

from eventmail.cancellation import CancellationToken


logger = logging.getLogger("eventmail.executor")


@dataclass
class ProcessResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    attempts: int = 0
    duration_seconds: float = 0.0


def build_command(file_path: str, arguments: str) -> list[str]:
    args = shlex.split(arguments or "", posix=os.name != "nt")
    return [file_path, *args]


class ProcessExecutor:
    def __init__(
        self,
        *,
        poll_interval: float = 0.2,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.poll_interval = poll_interval
        self._popen = popen

    def run(
        self,
        file_path: str,
        arguments: str,
        working_directory: str,
        max_retries: int,
        retry_interval_seconds: float,
        cancel: CancellationToken,
    ) -> ProcessResult:
        cwd = working_directory if (working_directory or "").strip() else os.getcwd()
        max_retries = max(int(max_retries or 0), 0)
        started = time.monotonic()

        result = ProcessResult(success=False)
        attempt = 0
        while attempt <= max_retries and not result.success:
            attempt += 1
            result = self._attempt(file_path, arguments, cwd, cancel)
            result.attempts = attempt
            if result.success:
                break
            logger.warning("attempt %s/%s failed for %s: %s", attempt, max_retries + 1, file_path, result.stderr.strip())
            if attempt <= max_retries:
                if cancel.wait(retry_interval_seconds):
                    break

        result.duration_seconds = time.monotonic() - started
        return result

    def _attempt(self, file_path: str, arguments: str, cwd: str, cancel: CancellationToken) -> ProcessResult:
        if cancel.is_cancelled:
            return ProcessResult(success=False, stderr="cancelled before launch")
        try:
            cmd = build_command(file_path, arguments)
            proc = self._popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except (OSError, ValueError) as e:
            return ProcessResult(success=False, stderr=str(e))

        with proc:
            while True:
                try:
                    out, err = proc.communicate(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if cancel.is_cancelled:
                        proc.kill()
                        out, err = proc.communicate()
                        return ProcessResult(
                            success=False,
                            stdout=out or "",
                            stderr=(err or "") + "cancelled while waiting for process exit",
                            exit_code=proc.returncode,
                        )
        return ProcessResult(
            success=proc.returncode == 0,
            stdout=out or "",
            stderr=err or "",
            exit_code=proc.returncode,
        )
