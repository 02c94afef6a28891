"""
Event Log Store - append-only order log with optimistic locking

The event store is the source of truth for every order. It provides:
- Append-only semantics (events never modified or deleted)
- Uniqueness and contiguity of (aggregate_id, version)
- Atomic expected-version check per aggregate
- Ordered reads for deterministic replay

Two backends share the EventStore protocol: the SQLite store below and the
InMemoryEventStore in memory_store.py.
"""

import json
import sqlite3
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from order_ledger.kernel.errors import ConcurrencyConflict, ConfigurationError, EventStoreError
from order_ledger.kernel.events import Event
from order_ledger.kernel.logging import get_logger
from order_ledger.kernel.metrics import (
    events_appended_total,
    events_loaded_total,
    version_conflicts_total,
)
from order_ledger.kernel.retry import retry_on_sqlite_lock

if TYPE_CHECKING:
    from order_ledger.kernel.config import LedgerSettings

logger = get_logger(__name__)


class EventStore(Protocol):
    """Contract every event log backend satisfies"""

    backend: str

    def append(self, event: Event, expected_version: int | None = None) -> Event:
        """
        Persist one event

        Raises:
            ConcurrencyConflict: If expected_version differs from the current
                version, or event.version is not current version + 1
        """
        ...

    def read_all(self, aggregate_id: str) -> list[Event]:
        """All events of one aggregate in ascending version order (empty if unknown)"""
        ...

    def read_everything(self) -> list[Event]:
        """Every event of every aggregate, in append order"""
        ...

    def current_version(self, aggregate_id: str) -> int:
        """Highest stored version of an aggregate (0 if unknown)"""
        ...


class EventStoreStats(BaseModel):
    """Aggregate counts over the whole log"""

    backend: str
    total_events: int = 0
    total_aggregates: int = 0
    events_by_kind: dict[str, int] = Field(default_factory=dict)


@runtime_checkable
class SupportsDiagnostics(Protocol):
    """Optional capability of durable backends: statistics and a liveness probe"""

    def stats(self) -> EventStoreStats:
        ...

    def health_check(self) -> bool:
        ...


def summarize_events(events: Iterable[Event], backend: str) -> EventStoreStats:
    """Compute store statistics by scanning events (for backends without diagnostics)"""
    kinds: Counter[str] = Counter()
    aggregates: set[str] = set()
    for event in events:
        kinds[event.kind] += 1
        aggregates.add(event.aggregate_id)
    return EventStoreStats(
        backend=backend,
        total_events=sum(kinds.values()),
        total_aggregates=len(aggregates),
        events_by_kind=dict(kinds.most_common()),
    )


def check_append(
    event: Event, current_version: int, expected_version: int | None
) -> None:
    """
    Shared version discipline for every backend

    Raises:
        ConcurrencyConflict: On an expected-version mismatch, a duplicate
            version, or a gap in the version sequence
    """
    if expected_version is not None and current_version != expected_version:
        raise ConcurrencyConflict(event.aggregate_id, expected_version, current_version)
    if event.version != current_version + 1:
        raise ConcurrencyConflict(event.aggregate_id, event.version - 1, current_version)


class SQLiteEventStore:
    """
    SQLite-based event store with append-only semantics

    WAL mode gives crash safety and lets readers proceed while a writer holds
    the lock. Appends run inside BEGIN IMMEDIATE, so the version check and
    the insert form one atomic step across connections and processes.

    Schema:
    - events table: append-only log, seq preserves global append order
    - Unique constraints: (aggregate_id, version), event_id
    - Indices: aggregate_id+version, kind, timestamp
    """

    backend = "sqlite"

    def __init__(self, db_path: str | Path, busy_timeout_s: float = 5.0) -> None:
        """
        Args:
            db_path: Path to SQLite database file (created if missing)
            busy_timeout_s: How long a connection waits for the write lock
        """
        self.db_path = Path(db_path)
        self.busy_timeout_s = busy_timeout_s
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
                    aggregate_id TEXT NOT NULL,
                    aggregate_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    payload_json TEXT NOT NULL,

                    UNIQUE(aggregate_id, version)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_aggregate "
                "ON events(aggregate_id, version)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_kind ON events(kind)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp)"
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections run in autocommit mode; transactions are opened explicitly.
        """
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout_s, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def append(self, event: Event, expected_version: int | None = None) -> Event:
        """
        Append one event with optimistic locking

        Args:
            event: Event to persist; its version must be current version + 1
            expected_version: Version the caller based its decision on

        Returns:
            The stored event

        Raises:
            ConcurrencyConflict: If another writer advanced the aggregate first
            EventStoreError: On database errors that survive lock retries
        """
        try:
            self._append_locked(event, expected_version)
        except ConcurrencyConflict as conflict:
            version_conflicts_total.labels(store=self.backend).inc()
            logger.info(
                "Version conflict on append",
                aggregate_id=event.aggregate_id,
                expected_version=conflict.expected_version,
                actual_version=conflict.actual_version,
            )
            raise
        except sqlite3.Error as e:
            raise EventStoreError(f"Failed to append event: {e}") from e

        events_appended_total.labels(store=self.backend, kind=event.kind).inc()
        logger.debug(
            "Event appended",
            aggregate_id=event.aggregate_id,
            version=event.version,
            kind=event.kind,
        )
        return event

    @retry_on_sqlite_lock()
    def _append_locked(self, event: Event, expected_version: int | None) -> None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current_version = self._current_version(conn, event.aggregate_id)
                check_append(event, current_version, expected_version)
                conn.execute(
                    """
                    INSERT INTO events (
                        event_id, aggregate_id, aggregate_type, version,
                        kind, timestamp, payload_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.event_id,
                        event.aggregate_id,
                        event.aggregate_type,
                        event.version,
                        event.kind,
                        event.timestamp.isoformat(),
                        json.dumps(event.payload),
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                if "version" in str(e).lower():
                    current = self._current_version(conn, event.aggregate_id)
                    raise ConcurrencyConflict(
                        event.aggregate_id, event.version - 1, current
                    ) from e
                raise EventStoreError(f"Event {event.event_id} rejected: {e}") from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def read_all(self, aggregate_id: str) -> list[Event]:
        """
        Load all events for an order in version order

        Returns:
            List of events (empty if the order doesn't exist)
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT event_id, aggregate_id, aggregate_type, version,
                       kind, timestamp, payload_json
                FROM events
                WHERE aggregate_id = ?
                ORDER BY version ASC
                """,
                (aggregate_id,),
            )
            events = [self._row_to_event(row) for row in cursor.fetchall()]

        events_loaded_total.labels(store=self.backend).inc(len(events))
        return events

    def read_everything(self) -> list[Event]:
        """Load every event in append order"""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT event_id, aggregate_id, aggregate_type, version,
                       kind, timestamp, payload_json
                FROM events
                ORDER BY seq ASC
                """
            )
            events = [self._row_to_event(row) for row in cursor.fetchall()]

        events_loaded_total.labels(store=self.backend).inc(len(events))
        return events

    def current_version(self, aggregate_id: str) -> int:
        with self._connect() as conn:
            return self._current_version(conn, aggregate_id)

    def _current_version(self, conn: sqlite3.Connection, aggregate_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(version) FROM events WHERE aggregate_id = ?",
            (aggregate_id,),
        ).fetchone()
        return row[0] if row[0] is not None else 0

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        return Event(
            event_id=row["event_id"],
            aggregate_id=row["aggregate_id"],
            aggregate_type=row["aggregate_type"],
            version=row["version"],
            kind=row["kind"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            payload=json.loads(row["payload_json"]),
        )

    # Diagnostics capability

    def stats(self) -> EventStoreStats:
        """Counts computed by the database rather than by scanning events"""
        with self._connect() as conn:
            total_events = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            total_aggregates = conn.execute(
                "SELECT COUNT(DISTINCT aggregate_id) FROM events"
            ).fetchone()[0]
            rows = conn.execute(
                "SELECT kind, COUNT(*) AS n FROM events GROUP BY kind ORDER BY n DESC, kind"
            ).fetchall()

        return EventStoreStats(
            backend=self.backend,
            total_events=total_events,
            total_aggregates=total_aggregates,
            events_by_kind={row["kind"]: row["n"] for row in rows},
        )

    def health_check(self) -> bool:
        """True when the database answers a trivial query"""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1 FROM events LIMIT 1")
            return True
        except sqlite3.Error as e:
            logger.error("Event store health check failed", error=str(e))
            return False


def create_event_store(settings: "LedgerSettings") -> EventStore:
    """
    Build the backend named by the settings

    Raises:
        ConfigurationError: If the store type is not supported
    """
    from order_ledger.kernel.memory_store import InMemoryEventStore

    if settings.store_type == "memory":
        return InMemoryEventStore()
    if settings.store_type == "sqlite":
        return SQLiteEventStore(settings.sqlite_path)
    raise ConfigurationError(f"Unsupported event store type: {settings.store_type}")
