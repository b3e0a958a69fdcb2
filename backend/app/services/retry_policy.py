"""
Retry delay policies for failed deliveries. The queue only asks "how long until attempt N+1";
swapping the policy never changes job semantics (attempt counting, max_attempts, terminal states).
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from app.config import Settings
from app.core.constants import RETRY_DELAY_SECONDS


class RetryPolicy(Protocol):
    def delay(self, attempts: int) -> timedelta:
        """Delay before the next attempt, given how many attempts have been made so far (>= 1)."""
        ...


@dataclass(frozen=True)
class FixedDelay:
    seconds: int = RETRY_DELAY_SECONDS

    def delay(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.seconds)


@dataclass(frozen=True)
class ExponentialBackoff:
    base_seconds: int = RETRY_DELAY_SECONDS
    factor: float = 2.0
    max_seconds: int = 3600

    def delay(self, attempts: int) -> timedelta:
        exponent = max(0, attempts - 1)
        return timedelta(seconds=min(self.max_seconds, self.base_seconds * (self.factor ** exponent)))


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    if settings.retry_backoff == "exponential":
        return ExponentialBackoff(base_seconds=settings.retry_delay_seconds, max_seconds=settings.retry_max_delay_seconds)
    return FixedDelay(seconds=settings.retry_delay_seconds)
