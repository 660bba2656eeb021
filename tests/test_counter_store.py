from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest import mock

import pytest

from rsvp.config import Settings
from rsvp.counter_store import LocalCounterStore, RedisCounterStore, build_counter_store


def test_local_store_starts_fresh_key_at_one(clock):
    store = LocalCounterStore(clock)

    result = store.increment("rsvp_submit:1.2.3.4", 300)

    assert result.count == 1
    assert result.reset_at == clock() + 300


def test_local_store_keeps_reset_time_within_window(clock):
    store = LocalCounterStore(clock)
    first = store.increment("key", 60)
    clock.advance(30)

    second = store.increment("key", 60)

    assert second.count == 2
    assert second.reset_at == first.reset_at


def test_local_store_restarts_expired_window(clock):
    store = LocalCounterStore(clock)
    for _ in range(4):
        store.increment("key", 60)
    clock.advance(60)

    result = store.increment("key", 60)

    assert result.count == 1
    assert result.reset_at == clock() + 60


def test_local_store_separates_keys(clock):
    store = LocalCounterStore(clock)
    store.increment("a", 60)
    store.increment("a", 60)

    assert store.increment("b", 60).count == 1


def test_local_store_counts_concurrent_increments_once_each(clock):
    store = LocalCounterStore(clock)

    with ThreadPoolExecutor(max_workers=8) as pool:
        counts = list(pool.map(lambda _: store.increment("shared", 60).count, range(200)))

    assert sorted(counts) == list(range(1, 201))


def test_purge_expired_drops_only_reset_windows(clock):
    store = LocalCounterStore(clock)
    store.increment("short", 10)
    store.increment("long", 100)
    clock.advance(10)

    assert store.purge_expired() == 1
    assert store.increment("long", 100).count == 2


def test_new_keys_sweep_expired_windows_past_threshold(clock):
    store = LocalCounterStore(clock, sweep_threshold=2)
    store.increment("a", 10)
    store.increment("b", 100)
    clock.advance(10)

    store.increment("c", 10)

    assert store.purge_expired() == 0
    assert store.increment("b", 100).count == 2


def test_redis_store_runs_script_with_window_in_milliseconds(clock):
    client = mock.Mock()
    script = mock.Mock(return_value=[2, 45_000])
    client.register_script.return_value = script
    store = RedisCounterStore(client, clock)

    result = store.increment("rsvp_edit:abc", 60)

    script.assert_called_once_with(keys=["rsvp_edit:abc"], args=[60_000])
    assert result.count == 2
    assert result.reset_at == clock() + 45


def test_build_counter_store_uses_local_store_without_redis_url():
    store = build_counter_store(Settings(environment="development"))

    assert isinstance(store, LocalCounterStore)


def test_build_counter_store_uses_redis_when_reachable():
    client = mock.Mock()
    connect = mock.Mock(return_value=client)

    store = build_counter_store(Settings(redis_url="redis://cache:6379/0"), connect=connect)

    connect.assert_called_once_with("redis://cache:6379/0")
    assert isinstance(store, RedisCounterStore)


def test_build_counter_store_falls_back_when_redis_unreachable_in_development():
    store = build_counter_store(
        Settings(environment="development", redis_url="redis://cache:6379/0"),
        connect=lambda url: None,
    )

    assert isinstance(store, LocalCounterStore)


def test_build_counter_store_refuses_local_store_in_production():
    with pytest.raises(RuntimeError, match="REDIS_URL"):
        build_counter_store(
            Settings(environment="production", redis_url="redis://cache:6379/0"),
            connect=lambda url: None,
        )


def test_build_counter_store_allows_local_store_when_opted_in():
    settings = Settings(environment="production", rate_limit_allow_local=True)

    assert isinstance(build_counter_store(settings), LocalCounterStore)
