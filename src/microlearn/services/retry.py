"""Retry policy for eventually-consistent profile reads.

Learn: The profile row is created by a database trigger right after
sign-up, so the first read can legitimately come back empty. Rather than
sleeping inline, callers take a RetryPolicy: how many attempts, how long
to wait before each, and which sleep function to use. Tests pass
RetryPolicy.immediate() and never wait.
"""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from microlearn.config import settings

SleepFn = Callable[[float], Awaitable[None]]
BackoffFn = Callable[[int], float]


def fixed_backoff(seconds: float) -> BackoffFn:
    """Same delay between every pair of attempts (no growth, no jitter)."""

    def backoff(retry: int) -> float:
        return seconds

    return backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a pluggable delay.

    `initial_delay` is waited once before the first attempt;
    `backoff(n)` is waited before retry n (n = 1 for the second attempt).
    """

    max_attempts: int = 3
    backoff: BackoffFn = field(default=fixed_backoff(1.0))
    initial_delay: float = 0.0
    sleep: SleepFn = field(default=asyncio.sleep)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def fixed(
        cls, attempts: int = 3, delay: float = 1.0, *, initial_delay: float = 0.0
    ) -> "RetryPolicy":
        return cls(
            max_attempts=attempts,
            backoff=fixed_backoff(delay),
            initial_delay=initial_delay,
        )

    @classmethod
    def immediate(cls, attempts: int = 3) -> "RetryPolicy":
        return cls(max_attempts=attempts, backoff=fixed_backoff(0.0))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Policy for client-side profile resolution."""
        return cls.fixed(
            attempts=settings.profile_retry_attempts,
            delay=settings.profile_retry_delay_seconds,
        )

    @classmethod
    def callback_from_settings(cls) -> "RetryPolicy":
        """Policy for the one-shot redirect callback.

        One read, after a grace period that gives the sign-up trigger
        a head start.
        """
        return cls.fixed(attempts=1, initial_delay=settings.callback_grace_seconds)

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before the given (1-based) attempt."""
        if attempt == 1:
            return self.initial_delay
        return self.backoff(attempt - 1)

    async def attempts(self) -> AsyncIterator[int]:
        """Yield attempt numbers 1..max_attempts, sleeping before each as due."""
        for attempt in range(1, self.max_attempts + 1):
            delay = self.delay_before(attempt)
            if delay > 0:
                await self.sleep(delay)
            yield attempt
