"""
Retry delays for failed backend calls.

Delays grow exponentially up to a cap and are spread with a random jitter
factor so that a fleet of agents hitting the same outage does not retry
in lockstep.
"""

import random
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class BackoffState:
    """Consecutive retryable failures since the last success."""

    attempt: int = 0

    def reset(self) -> None:
        self.attempt = 0


class RetryPolicy:
    def __init__(
        self,
        base: float = 60.0,
        max_delay: float = 3600.0,
        multiplier: float = 2.0,
        jitter: tuple = (0.8, 1.2),
        max_attempts: int = 3,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        if base <= 0 or max_delay < base:
            raise ValueError("need 0 < base <= max_delay")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        low, high = jitter
        if not 0 < low <= high:
            raise ValueError("jitter band must satisfy 0 < low <= high")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.base = base
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = (low, high)
        self.max_attempts = max_attempts
        self.__uniform = uniform

    def envelope(self, attempt: int) -> float:
        """Unjittered delay for the given attempt number."""
        # float pow overflows for very large attempt counts
        try:
            grown = self.base * self.multiplier**attempt
        except OverflowError:
            return self.max_delay
        return min(self.max_delay, grown)

    def next_delay(self, attempt: int) -> float:
        """Jittered delay; a fresh draw on every call."""
        low, high = self.jitter
        return self.envelope(attempt) * self.__uniform(low, high)

    def record_failure(
        self, state: BackoffState, retry_after: Optional[float] = None
    ) -> float:
        """Count one retryable failure and return how long to wait.

        A server-provided retry_after is a floor on the result, itself
        capped at the largest delay the policy can hand out."""
        delay = self.next_delay(state.attempt)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.longest_delay))
        self.count_failure(state)
        return delay

    def count_failure(self, state: BackoffState) -> None:
        """Count a failure that will not be waited on."""
        state.attempt += 1

    @property
    def longest_delay(self) -> float:
        return self.max_delay * self.jitter[1]

    def current_delay(self, state: BackoffState) -> float:
        """The delay the next failure would get, without counting one."""
        return self.next_delay(state.attempt)

    def reset(self, state: BackoffState) -> None:
        state.reset()
