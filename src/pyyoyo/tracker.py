"""Asynchronous exit-status tracking for the supervised child."""

import logging
import os
import threading
from queue import Empty, Queue

from pyyoyo.models import ExitReason

log = logging.getLogger("pyyoyo.tracker")


class ExitReasonTracker:
    """
    Single-slot record of the supervised child's wait-status.

    A daemon thread blocks in ``os.waitpid()`` for the tracked pid and hands
    the decoded ExitReason to the reader through a one-element Queue. The
    thread is the only place the child is reaped, so each child is reaped
    exactly once. Create a new tracker for every lifecycle.
    """

    def __init__(self) -> None:
        self._slot: Queue[ExitReason | None] = Queue(maxsize=1)
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None
        self._pid: int | None = None

    @property
    def pid(self) -> int | None:
        """The pid being tracked, if any."""
        return self._pid

    @property
    def finished(self) -> bool:
        """True once the child has been reaped (or reaping failed)."""
        return self._finished.is_set()

    @property
    def is_running(self) -> bool:
        """Check if the reaper thread is still waiting."""
        return self._thread is not None and self._thread.is_alive()

    def track(self, pid: int) -> None:
        """Start reaping ``pid`` in the background."""
        if self._thread is not None:
            raise RuntimeError(f"tracker already follows pid {self._pid}")

        self._pid = pid
        self._thread = threading.Thread(
            target=self._reap,
            args=(pid,),
            daemon=True,
            name=f"ExitReasonTracker-{pid}",
        )
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Sleep until the child is reaped or ``timeout`` elapses.

        Returns True if woken by the child's termination.
        """
        return self._finished.wait(timeout=timeout)

    def result(self, timeout: float | None = None) -> ExitReason | None:
        """
        Take the published ExitReason.

        Returns None if nothing was published within ``timeout`` or the
        status could not be collected.
        """
        try:
            reason = self._slot.get(timeout=timeout)
        except Empty:
            log.warning("no exit status for pid %s after %ss", self._pid, timeout)
            return None
        if self._thread is not None:
            self._thread.join()
        return reason

    def _reap(self, pid: int) -> None:
        """Reaper thread body."""
        reason: ExitReason | None = None
        try:
            reaped_pid, wait_status = os.waitpid(pid, 0)
        except ChildProcessError as exc:
            log.error("waitpid(%d) failed: %s", pid, exc)
        else:
            decoded = ExitReason.from_wait_status(reaped_pid, wait_status)
            log.debug("reaped pid %d (%d): %s", reaped_pid, wait_status, decoded.describe())
            # Only the child we were asked about may fill the slot
            if reaped_pid == self._pid:
                reason = decoded
        finally:
            self._slot.put(reason)
            self._finished.set()
