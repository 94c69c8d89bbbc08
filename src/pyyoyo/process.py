"""OS-facing capabilities of the monitor loop and their production backend."""

import errno
import logging
import os
import signal
import time
from typing import Protocol

import psutil

from pyyoyo.models import Snapshot
from pyyoyo.sampler import ProcStatSampler
from pyyoyo.tracker import ExitReasonTracker

log = logging.getLogger("pyyoyo.process")

SIGNAL_NAMES = {
    0: "null signal",
    signal.SIGTERM: "SIGTERM",
    signal.SIGKILL: "SIGKILL",
}

DEFAULT_TERM_GRACE = 5.0  # Seconds

# Spawn failures that say nothing about the command itself.
FATAL_SPAWN_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM})

# Exit status reported for a command that could not be executed, as sh does.
EXEC_FAILURE_EXIT_CODE = 127


class SpawnError(OSError):
    """The child command could not be started."""

    @property
    def fatal(self) -> bool:
        """
        True when no child could be created at all.

        Anything else, such as a missing or non-executable program, is a
        failed lifecycle of the command and may be retried.
        """
        return self.errno in FATAL_SPAWN_ERRNOS


class ProcessBackend(Protocol):
    """What the monitor loop needs to observe and signal one child."""

    def is_alive(self) -> bool:
        """Liveness check; False once the child is gone."""

    def sleep(self, seconds: float) -> None:
        """Wait between checks; may return early."""

    def sample(self) -> Snapshot:
        """Current per-thread state of the child."""

    def release(self, snapshot: Snapshot) -> None:
        """Hand back a snapshot that is no longer referenced."""

    def send_signal(self, sig: int) -> bool:
        """Signal the child; False if delivery failed."""


def signal_name(sig: int) -> str:
    return SIGNAL_NAMES.get(sig) or signal.Signals(sig).name


def spawn_child(command: list[str], output: str | None = None) -> int:
    """
    Start ``command`` directly (no shell) and return its pid.

    The child inherits the environment and stdio of the supervisor, unless
    ``output`` names a file to append its stdout and stderr to.
    """
    file_actions = []
    if output is not None:
        file_actions = [
            (os.POSIX_SPAWN_OPEN, 1, output, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644),
            (os.POSIX_SPAWN_DUP2, 1, 2),
        ]
    try:
        return os.posix_spawnp(command[0], command, os.environ, file_actions=file_actions)
    except OSError as exc:
        raise SpawnError(exc.errno, f"could not start {command[0]!r}: {exc.strerror}") from exc


class PosixProcess:
    """
    Production ProcessBackend for a child reaped by an ExitReasonTracker.

    The check reports the child gone as soon as the tracker has reaped it,
    so a recycled pid is never checked or signalled.
    """

    def __init__(self, pid: int, tracker: ExitReasonTracker, sampler: ProcStatSampler) -> None:
        self._pid = pid
        self._tracker = tracker
        self._sampler = sampler

    @property
    def pid(self) -> int:
        return self._pid

    def is_alive(self) -> bool:
        if self._tracker.finished:
            return False
        return psutil.pid_exists(self._pid)

    def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            time.sleep(0)  # Yield
            return
        self._tracker.wait(timeout=seconds)

    def sample(self) -> Snapshot:
        return self._sampler.sample(self._pid)

    def release(self, snapshot: Snapshot) -> None:
        # Snapshots are plain lists; the garbage collector reclaims them.
        pass

    def send_signal(self, sig: int) -> bool:
        if self._tracker.finished:
            return False
        return send_signal(self._pid, sig)


def send_signal(pid: int, sig: int) -> bool:
    """
    Send ``sig`` to ``pid`` through psutil.

    A process that already vanished is not an error worth reporting.
    """
    try:
        psutil.Process(pid).send_signal(sig)
    except psutil.NoSuchProcess:
        log.debug("pid %d already gone, %s not sent", pid, signal_name(sig))
        return False
    except (psutil.AccessDenied, OSError) as exc:
        log.warning("could not send %s to pid %d: %s", signal_name(sig), pid, exc)
        return False
    return True


def term_then_kill(backend: ProcessBackend, grace: float = DEFAULT_TERM_GRACE, poll: float = 0.1) -> int:
    """
    Ask the child to terminate, then force it.

    Sends SIGTERM, waits up to ``grace`` seconds for the liveness check to
    fail and sends SIGKILL if it did not. Returns the number of signals sent.
    """
    if not backend.is_alive():
        return 0

    backend.send_signal(signal.SIGTERM)
    deadline = time.monotonic() + grace
    while backend.is_alive():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            backend.send_signal(signal.SIGKILL)
            return 2
        backend.sleep(min(poll, remaining))
    return 1
