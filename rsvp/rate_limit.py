"""Per-identifier request limiting for the RSVP operations."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from rsvp.counter_store import CounterStore


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    max_requests: int
    window_seconds: float


SUBMIT_POLICY = RateLimitPolicy("submit", max_requests=3, window_seconds=5 * 60)
EDIT_POLICY = RateLimitPolicy("edit", max_requests=5, window_seconds=60)
VIEW_POLICY = RateLimitPolicy("view", max_requests=10, window_seconds=60)


class SlidingWindowLimiter:
    """Allows ``max_requests`` per identifier within a rolling window."""

    def __init__(self, store: CounterStore, policy: RateLimitPolicy) -> None:
        if policy.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self._store = store
        self.policy = policy

    def limit(self, identifier: str) -> RateLimitResult:
        key = f"rsvp_{self.policy.name}:{identifier}"
        counter = self._store.increment(key, self.policy.window_seconds)
        maximum = self.policy.max_requests
        if counter.count <= maximum:
            return RateLimitResult(
                allowed=True,
                limit=maximum,
                remaining=maximum - counter.count,
                reset_at=counter.reset_at,
            )
        return RateLimitResult(allowed=False, limit=maximum, remaining=0, reset_at=counter.reset_at)


class RateLimitRegistry:
    """The three limiters guarding submit, edit and fetch-for-edit."""

    def __init__(self, store: CounterStore) -> None:
        # submit is keyed by client IP; edit and view by capability token
        self.submit = SlidingWindowLimiter(store, SUBMIT_POLICY)
        self.edit = SlidingWindowLimiter(store, EDIT_POLICY)
        self.view = SlidingWindowLimiter(store, VIEW_POLICY)


def _plural(amount: int, unit: str) -> str:
    return f"{amount} {unit}" if amount == 1 else f"{amount} {unit}s"


def format_reset_time(reset_at: float, now: Callable[[], float] = time.time) -> str:
    """Describe how long until ``reset_at``, rounded up to whole units."""

    remaining = reset_at - now()
    if remaining <= 0:
        return "now"
    seconds = math.ceil(remaining)
    if seconds < 60:
        return _plural(seconds, "second")
    minutes = math.ceil(remaining / 60)
    if minutes < 60:
        return _plural(minutes, "minute")
    return _plural(math.ceil(remaining / 3600), "hour")
