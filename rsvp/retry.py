"""Bounded exponential backoff around spreadsheet calls."""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from rsvp.errors import SheetsError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "sheets call",
) -> T:
    """Run ``operation``, retrying transient :class:`SheetsError` failures.

    Delays double after each failed attempt (``base_delay``, ``2 * base_delay``,
    ...). Non-transient errors propagate immediately; the last transient error
    propagates once the attempts are exhausted.
    """

    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except SheetsError as exc:
            if not exc.transient or attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            LOGGER.warning(
                "%s failed, retrying in %.1fs",
                description,
                delay,
                extra={"attempt": attempt, "error_kind": exc.kind.value},
            )
            sleep(delay)
    raise AssertionError("unreachable")
