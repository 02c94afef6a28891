"""
Kernel - Core event sourcing infrastructure

The kernel provides the machinery the order domain builds on: the event
record, the append-only stores with optimistic locking, the clock, and the
ambient logging, metrics, retry and configuration layers. Nothing here knows
what an order is.
"""

from order_ledger.kernel.config import LedgerSettings
from order_ledger.kernel.errors import (
    AggregateNotFound,
    ConcurrencyConflict,
    ConfigurationError,
    DataIntegrityError,
    EventStoreError,
    InvalidRollbackTarget,
    InvariantViolation,
    LedgerError,
)
from order_ledger.kernel.event_store import (
    EventStore,
    EventStoreStats,
    SQLiteEventStore,
    SupportsDiagnostics,
    create_event_store,
)
from order_ledger.kernel.events import Event, create_event
from order_ledger.kernel.ids import generate_id, generate_order_id
from order_ledger.kernel.memory_store import InMemoryEventStore
from order_ledger.kernel.time import FrozenClock, SystemClock, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    "generate_order_id",
    # Time
    "TimeProvider",
    "SystemClock",
    "FrozenClock",
    # Events & stores
    "Event",
    "create_event",
    "EventStore",
    "EventStoreStats",
    "SupportsDiagnostics",
    "SQLiteEventStore",
    "InMemoryEventStore",
    "create_event_store",
    # Config
    "LedgerSettings",
    # Errors
    "LedgerError",
    "ConfigurationError",
    "EventStoreError",
    "ConcurrencyConflict",
    "AggregateNotFound",
    "DataIntegrityError",
    "InvalidRollbackTarget",
    "InvariantViolation",
]
