"""Retry and backoff policy for failed segments."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
DEFAULT_MAX_DELAY = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Consecutive-failure ceiling with exponential backoff.

    The delay before retry n (1-based) is base_delay * 2**(n-1), capped at
    max_delay: 2s, 4s, 8s, ... with the defaults.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")

    def is_exhausted(self, failures: int) -> bool:
        """True once the consecutive failure count reaches the ceiling."""
        return failures >= self.max_attempts

    def delay_for(self, failures: int) -> float:
        """Seconds to wait before retrying after the given failure count."""
        if failures < 1:
            return 0.0
        return min(self.base_delay * (2 ** (failures - 1)), self.max_delay)
