"""
In-memory event store

Same contract as the SQLite store, kept in process memory. Suitable for
tests, demos and short-lived processes; nothing survives a restart.
"""

import threading

from order_ledger.kernel.errors import ConcurrencyConflict
from order_ledger.kernel.event_store import check_append
from order_ledger.kernel.events import Event
from order_ledger.kernel.logging import get_logger
from order_ledger.kernel.metrics import (
    events_appended_total,
    events_loaded_total,
    version_conflicts_total,
)

logger = get_logger(__name__)


class InMemoryEventStore:
    """
    Event store backed by per-aggregate lists

    A single lock makes the version check and the append one atomic step.
    Reads return copies so callers can never touch the live log.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._streams: dict[str, list[Event]] = {}
        self._log: list[Event] = []
        self._lock = threading.Lock()

    def append(self, event: Event, expected_version: int | None = None) -> Event:
        with self._lock:
            stream = self._streams.get(event.aggregate_id, [])
            current_version = stream[-1].version if stream else 0
            try:
                check_append(event, current_version, expected_version)
            except ConcurrencyConflict as conflict:
                version_conflicts_total.labels(store=self.backend).inc()
                logger.info(
                    "Version conflict on append",
                    aggregate_id=event.aggregate_id,
                    expected_version=conflict.expected_version,
                    actual_version=conflict.actual_version,
                )
                raise

            self._streams.setdefault(event.aggregate_id, []).append(event)
            self._log.append(event)

        events_appended_total.labels(store=self.backend, kind=event.kind).inc()
        return event

    def read_all(self, aggregate_id: str) -> list[Event]:
        with self._lock:
            events = list(self._streams.get(aggregate_id, []))
        events_loaded_total.labels(store=self.backend).inc(len(events))
        return events

    def read_everything(self) -> list[Event]:
        with self._lock:
            events = list(self._log)
        events_loaded_total.labels(store=self.backend).inc(len(events))
        return events

    def current_version(self, aggregate_id: str) -> int:
        with self._lock:
            stream = self._streams.get(aggregate_id)
            return stream[-1].version if stream else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._log)
