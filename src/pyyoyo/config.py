"""Resolved supervisor configuration."""

from dataclasses import dataclass, field

from pyyoyo.detector import DEFAULT_HANG_TOLERANCE
from pyyoyo.monitor import DEFAULT_HANG_CHECK_INTERVAL, DEFAULT_MAX_HANGS

DEFAULT_MAX_RETRIES = 5


class ConfigError(ValueError):
    """The supervisor configuration is invalid."""


@dataclass(slots=True, frozen=True)
class SupervisorConfig:
    """
    Everything the supervisor needs to run one command.

    ``max_retries`` is the total number of attempts, the first one included.
    """

    command: list[str]
    interval: float = DEFAULT_HANG_CHECK_INTERVAL
    max_hangs: int = DEFAULT_MAX_HANGS
    max_retries: int = DEFAULT_MAX_RETRIES
    hang_tolerance: int = DEFAULT_HANG_TOLERANCE
    fakeroot: str = ""
    verbose: int = 0
    child_log: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.command:
            raise ConfigError("no child command given")
        if self.interval <= 0:
            raise ConfigError(f"interval must be positive, got {self.interval}")
        if self.max_hangs < 0:
            raise ConfigError(f"max_hangs must not be negative, got {self.max_hangs}")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.hang_tolerance < 0:
            raise ConfigError(f"hang_tolerance must not be negative, got {self.hang_tolerance}")

    @classmethod
    def resolve(
        cls,
        command: list[str],
        interval: float | None = None,
        max_hangs: int | None = None,
        max_retries: int | None = None,
        hang_tolerance: int | None = None,
        fakeroot: str | None = None,
        verbose: int = 0,
        child_log: str | None = None,
    ) -> "SupervisorConfig":
        """
        Build a config from loosely specified values.

        Missing or non-positive interval, max_hangs and max_retries fall
        back to their defaults.
        """
        return cls(
            command=list(command),
            interval=interval if interval is not None and interval > 0 else DEFAULT_HANG_CHECK_INTERVAL,
            max_hangs=max_hangs if max_hangs is not None and max_hangs >= 1 else DEFAULT_MAX_HANGS,
            max_retries=(
                max_retries if max_retries is not None and max_retries >= 1 else DEFAULT_MAX_RETRIES
            ),
            hang_tolerance=DEFAULT_HANG_TOLERANCE if hang_tolerance is None else hang_tolerance,
            fakeroot=fakeroot or "",
            verbose=verbose,
            child_log=child_log,
        )
