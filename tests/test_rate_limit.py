from __future__ import annotations

import pytest

from rsvp.counter_store import LocalCounterStore
from rsvp.rate_limit import (
    EDIT_POLICY,
    SUBMIT_POLICY,
    VIEW_POLICY,
    RateLimitPolicy,
    RateLimitRegistry,
    SlidingWindowLimiter,
    format_reset_time,
)


def test_policies_match_operation_budgets():
    assert (SUBMIT_POLICY.max_requests, SUBMIT_POLICY.window_seconds) == (3, 300)
    assert (EDIT_POLICY.max_requests, EDIT_POLICY.window_seconds) == (5, 60)
    assert (VIEW_POLICY.max_requests, VIEW_POLICY.window_seconds) == (10, 60)


@pytest.mark.parametrize("policy", [SUBMIT_POLICY, EDIT_POLICY, VIEW_POLICY])
def test_requests_up_to_max_are_allowed_then_rejected(clock, policy):
    limiter = SlidingWindowLimiter(LocalCounterStore(clock), policy)

    results = [limiter.limit("id") for _ in range(policy.max_requests + 1)]

    assert all(result.allowed for result in results[:-1])
    assert [result.remaining for result in results[:-1]] == list(
        range(policy.max_requests - 1, -1, -1)
    )
    assert not results[-1].allowed
    assert results[-1].remaining == 0
    assert results[-1].limit == policy.max_requests


def test_reset_time_is_reported_on_rejection(clock):
    limiter = SlidingWindowLimiter(LocalCounterStore(clock), RateLimitPolicy("t", 1, 60))

    first = limiter.limit("id")
    clock.advance(10)
    rejected = limiter.limit("id")

    assert rejected.reset_at == first.reset_at == clock() + 50


def test_limit_recovers_after_window(clock):
    limiter = SlidingWindowLimiter(LocalCounterStore(clock), SUBMIT_POLICY)
    for _ in range(4):
        limiter.limit("10.0.0.1")
    clock.advance(300)

    result = limiter.limit("10.0.0.1")

    assert result.allowed
    assert result.remaining == 2


def test_registry_limiters_do_not_share_counters(clock):
    registry = RateLimitRegistry(LocalCounterStore(clock))
    token = "a" * 64
    for _ in range(5):
        registry.edit.limit(token)

    assert not registry.edit.limit(token).allowed
    assert registry.view.limit(token).allowed


def test_limiter_rejects_zero_budget(clock):
    with pytest.raises(ValueError):
        SlidingWindowLimiter(LocalCounterStore(clock), RateLimitPolicy("t", 0, 60))


@pytest.mark.parametrize(
    "delta, expected",
    [
        (-1, "now"),
        (0, "now"),
        (0.2, "1 second"),
        (1, "1 second"),
        (45, "45 seconds"),
        (59.5, "1 minute"),
        (60, "1 minute"),
        (61, "2 minutes"),
        (300, "5 minutes"),
        (3540, "59 minutes"),
        (3599, "1 hour"),
        (3600, "1 hour"),
        (3601, "2 hours"),
    ],
)
def test_format_reset_time(clock, delta, expected):
    assert format_reset_time(clock() + delta, clock) == expected
