"""Hang heuristic: compare two thread snapshots of the same process."""

from typing import NamedTuple

from pyyoyo.models import Snapshot

DEFAULT_HANG_TOLERANCE = 1  # Clock ticks


class HangVerdict(NamedTuple):
    """Outcome of one hang check and the snapshot to compare against next."""

    hung: bool
    baseline: Snapshot


def process_looks_hung(
    previous: Snapshot | None,
    current: Snapshot,
    tolerance: int = DEFAULT_HANG_TOLERANCE,
) -> HangVerdict:
    """
    Decide whether the process looks hung.

    The process looks hung when every thread is sleeping, the set of threads
    is the same as in ``previous`` and no thread accumulated more than
    ``tolerance`` ticks of user or system time in between. The returned
    baseline is always ``current``; the caller owns ``previous`` afterwards.
    """
    # Deliberately not hung: an empty sample means the task directory is gone,
    # not that an idle process matched itself with zero threads
    if not current or not all(thread.is_sleeping for thread in current):
        return HangVerdict(False, current)

    if previous is None or len(previous) != len(current):
        return HangVerdict(False, current)

    before = {thread.tid: thread for thread in previous}
    for thread in current:
        old = before.get(thread.tid)
        if old is None:
            return HangVerdict(False, current)
        if thread.utime > old.utime + tolerance or thread.stime > old.stime + tolerance:
            return HangVerdict(False, current)

    return HangVerdict(True, current)
