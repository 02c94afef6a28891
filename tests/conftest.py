"""
Pytest configuration and shared fixtures

Every test gets fresh stores and a frozen clock, so event timestamps are
predictable and no state leaks between tests.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from order_ledger.kernel.config import LedgerSettings
from order_ledger.kernel.event_store import SQLiteEventStore
from order_ledger.kernel.memory_store import InMemoryEventStore
from order_ledger.kernel.time import FrozenClock
from order_ledger.ledger import OrderLedger
from order_ledger.orders.handlers import OrderCommandHandlers


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "orders.db"


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh SQLite event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def memory_store() -> InMemoryEventStore:
    """Provide a fresh in-memory event store for each test"""
    return InMemoryEventStore()


@pytest.fixture
def clock() -> FrozenClock:
    """
    Provide a controllable clock for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC. Tests advance it explicitly when
    timestamp rollbacks need distinct instants.
    """
    return FrozenClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def handlers(clock: FrozenClock) -> OrderCommandHandlers:
    """Provide stateless command handlers bound to the frozen clock"""
    return OrderCommandHandlers(clock)


@pytest.fixture
def ledger(memory_store: InMemoryEventStore, clock: FrozenClock) -> OrderLedger:
    """Provide a ledger over an in-memory store"""
    return OrderLedger(memory_store, clock, LedgerSettings(conflict_retries=3))


@pytest.fixture
def sqlite_ledger(event_store: SQLiteEventStore, clock: FrozenClock) -> OrderLedger:
    """Provide a ledger over a SQLite store"""
    return OrderLedger(event_store, clock, LedgerSettings(store_type="sqlite"))


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request: pytest.FixtureRequest, temp_db: Path):
    """Run a test against both store backends"""
    if request.param == "memory":
        return InMemoryEventStore()
    return SQLiteEventStore(temp_db)
