"""Atomic increment-with-expiry counters backing the rate limiters."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional, Protocol

import redis

from rsvp.config import Settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterResult:
    count: int
    reset_at: float


class CounterStore(Protocol):
    """Increments ``key`` inside a window of ``window_seconds``.

    Implementations must be atomic per key: two concurrent callers never
    observe the same count.
    """

    def increment(self, key: str, window_seconds: float) -> CounterResult:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class LocalCounterStore:
    """Process-local fixed-window counters.

    State is neither shared between processes nor kept across restarts, so this
    store only suits development or single-instance deployments.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_threshold: int = 10_000) -> None:
        self._clock = clock
        self._sweep_threshold = sweep_threshold
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def increment(self, key: str, window_seconds: float) -> CounterResult:
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                if window is None and len(self._windows) >= self._sweep_threshold:
                    self._drop_expired(now)
                window = _Window(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
            else:
                window.count += 1
            return CounterResult(count=window.count, reset_at=window.reset_at)

    def purge_expired(self) -> int:
        """Drop windows that have already reset; returns how many were removed."""

        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)


class RedisCounterStore:
    """Counters kept in Redis so every instance shares one quota."""

    # KEYS[1] = counter key, ARGV[1] = window in milliseconds.
    # Returns {count, milliseconds until the window resets}.
    _INCREMENT_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
        ttl = tonumber(ARGV[1])
    end
    return {current, ttl}
    """

    def __init__(self, client: Any, clock: Callable[[], float] = time.time) -> None:
        self._client = client
        self._clock = clock
        self._script = client.register_script(self._INCREMENT_SCRIPT)

    def increment(self, key: str, window_seconds: float) -> CounterResult:
        window_ms = max(1, int(window_seconds * 1000))
        count, ttl_ms = self._script(keys=[key], args=[window_ms])
        return CounterResult(count=int(count), reset_at=self._clock() + int(ttl_ms) / 1000)


def _connect_redis(url: str) -> Optional[Any]:
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        client.ping()
    except (redis.exceptions.RedisError, ValueError) as exc:
        LOGGER.warning("redis unavailable for rate limiting: %s", exc)
        return None
    return client


def build_counter_store(
    settings: Settings,
    connect: Callable[[str], Optional[Any]] = _connect_redis,
) -> CounterStore:
    """Pick the counter store once for the lifetime of the process.

    The remote store is used when ``REDIS_URL`` is set and answers a ping.
    Otherwise the local store is used, unless the deployment is production and
    has not explicitly opted into single-instance mode.
    """

    if settings.redis_url:
        client = connect(settings.redis_url)
        if client is not None:
            LOGGER.info("rate limiting backed by redis")
            return RedisCounterStore(client)

    if not settings.local_rate_limit_permitted:
        raise RuntimeError(
            "A reachable REDIS_URL is required for rate limiting in production. "
            "Set RATE_LIMIT_ALLOW_LOCAL=true only for single-instance deployments."
        )
    LOGGER.warning("rate limiting uses in-memory counters; limits are per process")
    return LocalCounterStore()
