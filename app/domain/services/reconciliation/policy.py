"""
Poll Policy - timing rules for one reconciliation worker.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.core.config import settings


@dataclass(frozen=True)
class PollPolicy:
    """
    interval_seconds: regular wait before every poll (the first poll included)
    rate_limit_default_seconds: wait after a 429 without a usable Retry-After
    deadline_seconds: total wall-clock budget of a worker
    max_rate_limit_seconds: upper bound on a server-provided Retry-After
    """

    interval_seconds: float = 5.0
    rate_limit_default_seconds: float = 30.0
    deadline_seconds: float = 900.0
    max_rate_limit_seconds: float = 3600.0

    def __post_init__(self) -> None:
        for name in ("interval_seconds", "rate_limit_default_seconds", "deadline_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            interval_seconds=settings.ACCRUAL_POLL_INTERVAL_SECONDS,
            rate_limit_default_seconds=settings.ACCRUAL_RATE_LIMIT_DEFAULT_SECONDS,
            deadline_seconds=settings.ACCRUAL_WORKER_DEADLINE_SECONDS,
        )

    def rate_limit_delay(self, retry_after: Optional[float]) -> float:
        """Seconds to suspend after a 429, never less than the regular interval"""
        if retry_after is None:
            delay = self.rate_limit_default_seconds
        else:
            delay = min(retry_after, self.max_rate_limit_seconds)
        return max(delay, self.interval_seconds)

    @staticmethod
    def clamp(delay: float, remaining: float) -> float:
        """Never wait past the deadline"""
        return max(0.0, min(delay, remaining))
