"""Hang monitoring loop for pyyoyo."""

import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass

from pyyoyo.detector import DEFAULT_HANG_TOLERANCE, process_looks_hung
from pyyoyo.models import Snapshot
from pyyoyo.process import ProcessBackend, signal_name

log = logging.getLogger("pyyoyo.monitor")

DEFAULT_HANG_CHECK_INTERVAL = 60.0  # Seconds
DEFAULT_MAX_HANGS = 5


@dataclass(slots=True)
class MonitorTick:
    """What one pass of the monitor loop observed and did."""

    pid: int
    snapshot: Snapshot
    hung: bool
    hang_count: int
    signal_sent: int | None  # None when no signal was sent


class HangMonitor:
    """
    Watches one child until it is gone, signalling it while it looks hung.

    Every ``interval`` seconds the child's threads are sampled and compared
    with the retained baseline. Each consecutive hung verdict increments the
    hang count; the child gets SIGTERM while the count is within
    ``max_hangs`` and SIGKILL after that. Any sign of progress resets the
    count. The loop ends only when the backend's liveness check fails.
    """

    def __init__(
        self,
        pid: int,
        backend: ProcessBackend,
        max_hangs: int = DEFAULT_MAX_HANGS,
        interval: float = DEFAULT_HANG_CHECK_INTERVAL,
        tolerance: int = DEFAULT_HANG_TOLERANCE,
        on_tick: Callable[[MonitorTick], None] | None = None,
    ) -> None:
        """
        Initialize the HangMonitor.

        Args:
            pid: The child to watch.
            backend: Sampling, sleeping and signalling capabilities.
            max_hangs: Consecutive hung verdicts answered with SIGTERM
                before escalating to SIGKILL.
            interval: Seconds to sleep between checks.
            tolerance: Ticks of utime/stime growth still counted as idle.
            on_tick: Optional observer called after every check.
        """
        self._pid = pid
        self._backend = backend
        self._max_hangs = max_hangs
        self._interval = interval
        self._tolerance = tolerance
        self._on_tick = on_tick
        self._hang_count = 0
        self.hangs = 0
        self.terms_sent = 0
        self.kills_sent = 0

    @property
    def hang_count(self) -> int:
        """Current number of consecutive hung verdicts."""
        return self._hang_count

    @property
    def signals_sent(self) -> int:
        return self.terms_sent + self.kills_sent

    def run(self) -> None:
        """Monitor until the child is gone."""
        backend = self._backend
        baseline: Snapshot | None = None

        while backend.is_alive():
            # May return early when the child terminates
            backend.sleep(self._interval)

            previous = baseline
            current = backend.sample()
            hung, baseline = process_looks_hung(previous, current, self._tolerance)

            sig = self._handle_hung() if hung else self._handle_progress()

            if previous is not None and previous is not baseline:
                backend.release(previous)
            if current is not baseline:
                backend.release(current)

            if self._on_tick is not None:
                self._on_tick(MonitorTick(self._pid, current, hung, self._hang_count, sig))

        if baseline is not None:
            backend.release(baseline)

    def _handle_hung(self) -> int:
        self._hang_count += 1
        self.hangs += 1
        if self._hang_count <= self._max_hangs:
            sig = signal.SIGTERM
            self.terms_sent += 1
        else:
            sig = signal.SIGKILL
            self.kills_sent += 1

        delivered = self._backend.send_signal(sig)
        log.warning(
            "pid %d looks hung (%d/%d), %s %s",
            self._pid,
            self._hang_count,
            self._max_hangs,
            signal_name(sig),
            "sent" if delivered else "not delivered",
        )
        self._backend.sleep(0)  # Yield
        return sig

    def _handle_progress(self) -> None:
        self._hang_count = 0
        log.info("pid %d still appears to be doing something worthwhile", self._pid)
        return None
