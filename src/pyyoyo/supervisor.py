"""Retry state machine: launch, monitor and relaunch a child command."""

import logging
import sys
import threading
import time
from collections.abc import Callable
from typing import TextIO

from pyyoyo.config import SupervisorConfig
from pyyoyo.models import AttemptRecord, ExitReason
from pyyoyo.monitor import HangMonitor, MonitorTick
from pyyoyo.process import (
    DEFAULT_TERM_GRACE,
    EXEC_FAILURE_EXIT_CODE,
    PosixProcess,
    ProcessBackend,
    SpawnError,
    spawn_child,
    term_then_kill,
)
from pyyoyo.sampler import ProcStatSampler
from pyyoyo.tracker import ExitReasonTracker

log = logging.getLogger("pyyoyo.supervisor")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

# How long to wait for the reaper after the monitor saw the child vanish.
RESULT_TIMEOUT = 5.0


class Supervisor:
    """
    Runs a command until it exits cleanly or the attempt budget is spent.

    Each attempt spawns the child, watches it with a HangMonitor until it
    is gone and then inspects the ExitReason published by that attempt's
    ExitReasonTracker. A normal exit with status 0 ends supervision
    successfully; any other outcome is retried while attempts remain.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        *,
        spawn: Callable[[list[str], str | None], int] = spawn_child,
        tracker_factory: Callable[[], ExitReasonTracker] = ExitReasonTracker,
        backend_factory: Callable[[int, ExitReasonTracker], ProcessBackend] | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
        on_tick: Callable[[MonitorTick], None] | None = None,
        on_attempt: Callable[[AttemptRecord], None] | None = None,
        result_timeout: float = RESULT_TIMEOUT,
    ) -> None:
        """
        Initialize the Supervisor.

        Args:
            config: The command and its supervision settings.
            spawn: Starts the command and returns its pid.
            tracker_factory: Makes a fresh ExitReasonTracker per attempt.
            backend_factory: Builds the ProcessBackend for a spawned pid.
            out: Sink for outcome lines (stdout when None).
            err: Sink for error lines (stderr when None).
            on_tick: Observer for every monitor check.
            on_attempt: Observer for every finished attempt.
            result_timeout: Seconds to wait for the reaper after the child is gone.
        """
        self._config = config
        self._spawn = spawn
        self._tracker_factory = tracker_factory
        self._backend_factory = backend_factory or self._posix_backend
        self._out = out
        self._err = err
        self._on_tick = on_tick
        self._on_attempt = on_attempt
        self._result_timeout = result_timeout
        self._sampler = ProcStatSampler(config.fakeroot)
        self._stopping = threading.Event()
        self._stop_grace = DEFAULT_TERM_GRACE
        self._current: ProcessBackend | None = None
        self.attempts: list[AttemptRecord] = []

    @property
    def config(self) -> SupervisorConfig:
        """The configuration being supervised."""
        return self._config

    @property
    def attempts_remaining(self) -> int:
        """Attempts left in the retry budget."""
        return self._config.max_retries - len(self.attempts)

    def run(self) -> int:
        """Supervise the command; returns the process exit status to use."""
        config = self._config

        for attempt in range(1, config.max_retries + 1):
            if self._stopping.is_set():
                break

            record = self._run_attempt(attempt)
            if record is None:
                return EXIT_FAILURE

            self.attempts.append(record)
            if self._on_attempt is not None:
                self._on_attempt(record)

            # A child that obeyed our own SIGTERM did not succeed
            if self._stopping.is_set():
                break

            if record.succeeded:
                self._say("Child completed successfully")
                return EXIT_SUCCESS
            self._report_failure(record)

        if self._stopping.is_set():
            self._say("Supervision stopped.", error=True)
            return EXIT_FAILURE

        self._say("\n".join(item.describe() for item in self.attempts))
        self._say("Retries limit reached.", error=True)
        return EXIT_FAILURE

    def stop(self, grace: float = DEFAULT_TERM_GRACE) -> None:
        """
        Start no further attempts and terminate the running child.

        Meant for interactive front ends; run() returns EXIT_FAILURE.
        """
        self._stop_grace = grace
        self._stopping.set()
        backend = self._current
        if backend is not None:
            term_then_kill(backend, grace=grace)

    def _run_attempt(self, attempt: int) -> AttemptRecord | None:
        """One spawn/monitor/evaluate cycle; None if the spawn failed."""
        config = self._config

        # A fresh tracker per lifecycle, ready before the child exists
        tracker = self._tracker_factory()

        if config.verbose > 0:
            self._say(" ".join(config.command))
        try:
            pid = self._spawn(config.command, config.child_log)
        except SpawnError as exc:
            self._say(str(exc), error=True)
            if exc.fatal:
                log.error("spawn failed: %s", exc)
                return None
            log.warning("attempt %d could not execute the command: %s", attempt, exc)
            return self._exec_failure(attempt)

        tracker.track(pid)
        log.info("attempt %d/%d started child pid %d", attempt, config.max_retries, pid)
        if config.verbose > 0:
            self._say(f"child_pid: {pid}")

        backend = self._backend_factory(pid, tracker)
        self._current = backend
        # stop() may have looked for a child before it was published
        if self._stopping.is_set():
            term_then_kill(backend, grace=self._stop_grace)

        monitor = HangMonitor(
            pid,
            backend,
            max_hangs=config.max_hangs,
            interval=config.interval,
            tolerance=config.hang_tolerance,
            on_tick=self._on_tick,
        )

        started = time.monotonic()
        monitor.run()
        self._current = None

        reason = tracker.result(timeout=self._result_timeout)
        return AttemptRecord(
            attempt=attempt,
            pid=pid,
            reason=reason,
            hangs=monitor.hangs,
            signals_sent=monitor.signals_sent,
            duration=time.monotonic() - started,
        )

    def _exec_failure(self, attempt: int) -> AttemptRecord:
        """Record a command that could not be executed as a failed lifecycle."""
        status = EXEC_FAILURE_EXIT_CODE << 8
        return AttemptRecord(
            attempt=attempt,
            pid=0,
            reason=ExitReason.from_wait_status(0, status),
            hangs=0,
            signals_sent=0,
            duration=0.0,
        )

    def _report_failure(self, record: AttemptRecord) -> None:
        """Print the outcome of a failed attempt."""
        reason: ExitReason | None = record.reason
        if reason is None:
            self._say(f"child {record.pid}: exit status unresolved")
        elif reason.exited:
            self._say(f"Child exited with status {reason.exit_code}")
        else:
            self._say(f"child {record.pid}:\n{reason.describe()}")
        log.info("%d attempt(s) remaining", self.attempts_remaining)

    def _posix_backend(self, pid: int, tracker: ExitReasonTracker) -> ProcessBackend:
        """Default backend: the real child seen through /proc and psutil."""
        return PosixProcess(pid, tracker, self._sampler)

    def _say(self, message: str, error: bool = False) -> None:
        """Write a user-facing line unless diagnostics are silenced."""
        if self._config.verbose < 0:
            return
        if error:
            stream = self._err if self._err is not None else sys.stderr
        else:
            stream = self._out if self._out is not None else sys.stdout
        print(message, file=stream, flush=True)
