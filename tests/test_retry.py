from __future__ import annotations

from unittest import mock

import pytest

from rsvp.errors import SheetsError, SheetsErrorKind
from rsvp.retry import retry_with_backoff


def test_succeeds_after_transient_failures():
    operation = mock.Mock(
        side_effect=[
            SheetsError(SheetsErrorKind.TIMEOUT, "timed out"),
            SheetsError(SheetsErrorKind.QUOTA_EXCEEDED, "quota", status=429),
            "ok",
        ]
    )
    delays = []

    assert retry_with_backoff(operation, attempts=3, base_delay=1.0, sleep=delays.append) == "ok"
    assert operation.call_count == 3
    assert delays == [1.0, 2.0]


def test_gives_up_after_last_attempt():
    error = SheetsError(SheetsErrorKind.UNKNOWN, "bad gateway", status=502)
    operation = mock.Mock(side_effect=error)
    delays = []

    with pytest.raises(SheetsError) as excinfo:
        retry_with_backoff(operation, attempts=3, base_delay=0.5, sleep=delays.append)

    assert excinfo.value is error
    assert operation.call_count == 3
    assert delays == [0.5, 1.0]


@pytest.mark.parametrize(
    "error",
    [
        SheetsError(SheetsErrorKind.AUTH_FAILED, "denied", status=403),
        SheetsError(SheetsErrorKind.NOT_FOUND, "missing", status=404),
        SheetsError(SheetsErrorKind.UNKNOWN, "bad request", status=400),
        SheetsError(SheetsErrorKind.UNKNOWN, "invalid row"),
    ],
)
def test_definitive_failures_are_not_retried(error):
    operation = mock.Mock(side_effect=error)
    delays = []

    with pytest.raises(SheetsError):
        retry_with_backoff(operation, sleep=delays.append)

    assert operation.call_count == 1
    assert delays == []


def test_other_exceptions_propagate_immediately():
    operation = mock.Mock(side_effect=KeyError("boom"))

    with pytest.raises(KeyError):
        retry_with_backoff(operation, sleep=lambda _: None)

    assert operation.call_count == 1


def test_requires_at_least_one_attempt():
    with pytest.raises(ValueError):
        retry_with_backoff(lambda: None, attempts=0)
