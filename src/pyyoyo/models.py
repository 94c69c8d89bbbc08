"""Data models for pyyoyo."""

import os
from dataclasses import dataclass

# Thread state character the hang heuristic treats as idle.
SLEEPING = "S"


@dataclass(slots=True, frozen=True)
class ThreadState:
    """Immutable scheduling snapshot of a single thread."""

    tid: int
    state: str  # 'R', 'S', 'D', 'T', 'Z', etc.
    utime: int  # Clock ticks
    stime: int  # Clock ticks

    @property
    def is_sleeping(self) -> bool:
        return self.state == SLEEPING


# All threads of one process at one instant, in enumeration order.
Snapshot = list[ThreadState]

EMPTY_THREAD_STATE = ThreadState(tid=0, state="", utime=0, stime=0)


@dataclass(slots=True, frozen=True)
class ExitReason:
    """Decoded wait-status of one child lifecycle."""

    pid: int
    wait_status: int
    exited: bool = False
    exit_code: int = 0
    signaled: bool = False
    termsig: int = 0
    coredump: bool = False
    stopped: bool = False
    stopsig: int = 0
    continued: bool = False

    @classmethod
    def from_wait_status(cls, pid: int, wait_status: int) -> "ExitReason":
        """Decode a raw status as returned by os.waitpid()."""
        exited = os.WIFEXITED(wait_status)
        signaled = os.WIFSIGNALED(wait_status)
        stopped = os.WIFSTOPPED(wait_status)
        return cls(
            pid=pid,
            wait_status=wait_status,
            exited=exited,
            exit_code=os.WEXITSTATUS(wait_status) if exited else 0,
            signaled=signaled,
            termsig=os.WTERMSIG(wait_status) if signaled else 0,
            coredump=signaled and os.WCOREDUMP(wait_status),
            stopped=stopped,
            stopsig=os.WSTOPSIG(wait_status) if stopped else 0,
            continued=os.WIFCONTINUED(wait_status),
        )

    @property
    def succeeded(self) -> bool:
        """True only for a normal exit with status 0."""
        return self.exited and self.exit_code == 0

    def describe(self) -> str:
        """Human readable description of the wait-status."""
        parts = [f"child pid {self.pid}"]
        if self.exited:
            parts.append(f"terminated normally exit code: {self.exit_code}")
        if self.signaled:
            parts.append("terminated by a signal")
            if self.termsig:
                parts.append(str(self.termsig))
            if self.coredump:
                parts.append("produced a core dump")
        if self.stopped:
            parts.append("stopped (WUNTRACED? ptrace?)")
            if self.stopsig:
                parts.append(f"stop signal: {self.stopsig}")
        if self.continued:
            parts.append("was resumed by SIGCONT")
        return " ".join(parts)


@dataclass(slots=True, frozen=True)
class AttemptRecord:
    """Summary of one supervised lifecycle."""

    attempt: int
    pid: int
    reason: ExitReason | None  # None when the status was never resolved
    hangs: int
    signals_sent: int
    duration: float  # Seconds

    @property
    def succeeded(self) -> bool:
        return self.reason is not None and self.reason.succeeded

    def describe(self) -> str:
        outcome = self.reason.describe() if self.reason else f"child pid {self.pid} unresolved"
        return (
            f"attempt {self.attempt}: {outcome}"
            f" (hangs: {self.hangs}, signals: {self.signals_sent}, {self.duration:.1f}s)"
        )
