"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from src.rs_exchange.application.service import ExchangeService
from src.rs_exchange.infrastructure.memory import (
    MemorySession,
    MemoryStore,
    memory_repositories,
)


class TickingClock:
    """Deterministic clock: every call returns the previous value + step."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(minutes=1)) -> None:
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=UTC)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def db(store: MemoryStore) -> MemorySession:
    return store.session()


@pytest.fixture
def svc(clock: TickingClock) -> ExchangeService:
    """ExchangeService wired to the in-memory repositories."""
    return ExchangeService(**memory_repositories(), clock=clock)
