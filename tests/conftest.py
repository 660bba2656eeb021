from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rsvp.clients.sheets import InMemorySheet
from rsvp.config import Settings
from rsvp.counter_store import LocalCounterStore
from rsvp.rate_limit import RateLimitRegistry
from rsvp.service import RSVPService

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
DEADLINE = datetime(2026, 1, 10, 23, 59, 59, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="test",
        app_url="https://rsvp.example.com",
        rsvp_deadline=DEADLINE,
        sheets_backend="memory",
    )


@pytest.fixture()
def sheet() -> InMemorySheet:
    return InMemorySheet()


@pytest.fixture()
def sleeps() -> list:
    return []


@pytest.fixture()
def make_service(settings, sheet, clock, sleeps):
    def factory(sheets=None, now=lambda: NOW, store=None):
        return RSVPService(
            settings,
            sheets if sheets is not None else sheet,
            RateLimitRegistry(store or LocalCounterStore(clock)),
            now=now,
            clock=clock,
            sleep=sleeps.append,
        )

    return factory


@pytest.fixture()
def service(make_service) -> RSVPService:
    return make_service()
