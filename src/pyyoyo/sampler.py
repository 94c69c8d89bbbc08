"""Per-thread scheduling state sampler backed by /proc."""

import glob
import logging
import os

from pyyoyo.models import EMPTY_THREAD_STATE, Snapshot, ThreadState

log = logging.getLogger("pyyoyo.sampler")

# A stat line is well under this, even with a 64 char thread name.
MAX_STAT_BYTES = 4096

# Positions of utime/stime counted from the state field (field 3 == index 0).
_UTIME_OFFSET = 14 - 3
_STIME_OFFSET = 15 - 3


class StatParseError(ValueError):
    """A thread stat line could not be parsed."""


def stat_pattern(pid: int, root: str = "") -> str:
    """Glob pattern matching every thread stat file of ``pid``."""
    return f"{root}/proc/{pid}/task/*/stat"


def parse_stat_line(line: str) -> ThreadState:
    """
    Parse one ``/proc/<pid>/task/<tid>/stat`` record.

    The thread name (field 2) is wrapped in parentheses and may itself
    contain spaces or parentheses, so it is delimited by the first ``(``
    and the last ``)`` rather than by whitespace.
    """
    open_paren = line.find("(")
    close_paren = line.rfind(")")
    if open_paren < 0 or close_paren < open_paren:
        raise StatParseError(f"no thread name field in {line[:80]!r}")

    tid_field = line[:open_paren].strip()
    rest = line[close_paren + 1 :].split()
    if len(rest) <= _STIME_OFFSET:
        raise StatParseError(f"expected at least 15 fields, got {len(rest) + 2}")

    try:
        return ThreadState(
            tid=int(tid_field),
            state=rest[0],
            utime=int(rest[_UTIME_OFFSET]),
            stime=int(rest[_STIME_OFFSET]),
        )
    except ValueError as exc:
        raise StatParseError(str(exc)) from exc


def read_thread_state(path: str) -> ThreadState | None:
    """
    Read a single thread stat file.

    Returns None if the thread exited before it could be read. Any other
    failure is logged and yields a zeroed ThreadState so that the caller's
    snapshot keeps one entry per enumerated thread.
    """
    try:
        with open(path, "rb") as stat_file:
            raw = stat_file.read(MAX_STAT_BYTES)
    except (FileNotFoundError, ProcessLookupError):
        # Thread went away between glob() and open()
        return None
    except OSError as exc:
        log.warning("could not read %s: %s", path, exc)
        return EMPTY_THREAD_STATE

    try:
        return parse_stat_line(raw.decode("utf-8", "replace"))
    except StatParseError as exc:
        log.warning("could not parse %s: %s", path, exc)
        return EMPTY_THREAD_STATE


class ProcStatSampler:
    """
    Collects a Snapshot of every thread of a process.

    Reads ``<root>/proc/<pid>/task/*/stat``; ``root`` lets tests and
    containerized setups point the sampler at another /proc tree.
    """

    def __init__(self, root: str = "") -> None:
        self._root = root.rstrip(os.sep) if root else ""

    @property
    def root(self) -> str:
        return self._root

    def sample(self, pid: int) -> Snapshot:
        """Return one ThreadState per readable thread, in enumeration order."""
        pattern = stat_pattern(pid, self._root)
        paths = glob.glob(pattern)
        log.debug("pattern %r matched %d thread(s)", pattern, len(paths))

        snapshot: Snapshot = []
        errors = 0
        for path in paths:
            state = read_thread_state(path)
            if state is None:
                continue
            if state is EMPTY_THREAD_STATE:
                errors += 1
            snapshot.append(state)

        if errors:
            log.warning("sample of pid %d (root %r) had %d error(s)", pid, self._root, errors)
        return snapshot
