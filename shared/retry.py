"""
Retry configuration and backoff state for resilient upstream calls.
"""

import random
from dataclasses import dataclass


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


@dataclass(frozen=True)
class RetryState:
    """Immutable position inside a retry loop.

    ``attempt`` is 1-based. Each failed attempt produces a new state via
    :meth:`advance`; the request object itself is never mutated.
    """

    attempt: int
    max_attempts: int
    next_delay_seconds: float

    @classmethod
    def initial(cls, config: RetryConfig) -> "RetryState":
        return cls(attempt=1, max_attempts=config.max_attempts,
                   next_delay_seconds=calculate_delay(1, config))

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self, config: RetryConfig) -> "RetryState":
        attempt = self.attempt + 1
        return RetryState(attempt=attempt, max_attempts=self.max_attempts,
                          next_delay_seconds=calculate_delay(attempt, config))


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay after the given (1-based) failed attempt."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
