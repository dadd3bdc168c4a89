"""
Reconnect backoff policy.

Exponential growth with jitter, capped at `max_delay`. Within one run of
consecutive failures the delay never goes down. Past `max_attempts` the
session keeps retrying, but only every `cooldown` seconds.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Reconnect settings.

    Attributes:
        base_delay: Delay before the first retry, in seconds.
        max_delay: Cap for the exponential delay.
        jitter_factor: Extra random delay, as a fraction of the raw delay (0.3 = up to +30%).
        max_attempts: Consecutive failures before switching to `cooldown`.
        cooldown: Delay used once `max_attempts` is exhausted.
        conflict_cooldown: Minimum delay after the stream was replaced by another device.
        stable_after: Seconds a session must stay open before the failure count resets.
    """
    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter_factor: float = 0.3
    max_attempts: int = 10
    cooldown: float = 300.0
    conflict_cooldown: float = 600.0
    stable_after: float = 60.0

    def __post_init__(self):
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if not (0.0 <= self.jitter_factor <= 1.0):
            raise ValueError("jitter_factor must be between 0.0 and 1.0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.cooldown < self.max_delay:
            raise ValueError("cooldown must be >= max_delay")
        if self.stable_after < 0:
            raise ValueError("stable_after must not be negative")


class Backoff:
    """Failure counter and delay calculator for one session."""

    def __init__(self, policy: BackoffPolicy, rng: Callable[[], float] = random.random):
        self._policy = policy
        self._rng = rng
        self._failures = 0
        self._last_delay = 0.0

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def exhausted(self) -> bool:
        return self._failures > self._policy.max_attempts

    def next_delay(self) -> float:
        """Record one more failure and return the delay before the next attempt."""
        self._failures += 1
        policy = self._policy
        if self.exhausted:
            delay = policy.cooldown
        else:
            raw = min(policy.max_delay, policy.base_delay * (2 ** (self._failures - 1)))
            jitter = raw * policy.jitter_factor * self._rng()
            delay = min(policy.max_delay, raw + jitter)
        delay = max(delay, self._last_delay)
        self._last_delay = delay
        return delay

    def next_conflict_delay(self) -> float:
        delay = max(self.next_delay(), self._policy.conflict_cooldown)
        self._last_delay = delay
        return delay

    def reset(self) -> None:
        if self._failures:
            logger.debug(f"Backoff reset after {self._failures} failures")
        self._failures = 0
        self._last_delay = 0.0
