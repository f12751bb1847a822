"""Delay schedule for lease attempts while the lock backend is unreachable.

The first failure waits the normal retry interval; each further consecutive
failure doubles the wait up to ``max_delay``. Jitter only shortens a delay,
never below ``base_delay``, so replicas that lost Redis together spread out
without ever retrying faster than a healthy follower would.
"""

import random


class RetryBackoff:
    """Consecutive-failure backoff; ``reset()`` after any backend round-trip."""

    def __init__(
        self,
        base_delay: float,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter: float = 0.25,
    ):
        if not 0.0 <= jitter < 1.0:
            raise ValueError("jitter must be in [0, 1)")
        self.base_delay = base_delay
        self.max_delay = max(max_delay, base_delay)
        self.multiplier = multiplier
        self.jitter = jitter
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    def ceiling(self) -> float:
        """Upper bound of the next delay."""
        return min(self.base_delay * self.multiplier ** self._failures, self.max_delay)

    def next_delay(self) -> float:
        ceiling = self.ceiling()
        self._failures += 1
        if self._failures == 1:
            return self.base_delay
        return max(self.base_delay, ceiling * (1.0 - self.jitter * random.random()))

    def reset(self) -> None:
        self._failures = 0
