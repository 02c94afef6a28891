"""
Reconstruction Engine - derive an order from its event log

Replay is the only way to obtain an Order. It is deterministic: the same
events always yield the same order, whatever order they arrive in, because
events are sorted by version and nothing but stored data is consulted.

Rollbacks are handled by choosing which events to replay rather than by
undoing anything:
1. Sort by version
2. Take the highest-version OrderRolledBack as the active rollback
3. Keep events at or before its (resolved) target, plus events after it
4. Apply the kept events in version order
"""

import time
from collections.abc import Callable
from typing import Iterable

from pydantic import BaseModel, ValidationError

from order_ledger.kernel.errors import DataIntegrityError, InvariantViolation
from order_ledger.kernel.events import Event
from order_ledger.kernel.logging import get_logger
from order_ledger.kernel.metrics import (
    replay_duration_seconds,
    replayed_events_total,
    unknown_events_skipped_total,
)
from order_ledger.orders.events import (
    EventKind,
    OrderCreated,
    OrderItemAdded,
    OrderItemRemoved,
    OrderStatusChanged,
    PAYLOAD_MODELS,
    is_rollback,
)
from order_ledger.orders.invariants import add_item, change_status, create_order, remove_item
from order_ledger.orders.models import Order
from order_ledger.orders.rollback import replay_window

logger = get_logger(__name__)


def _apply_created(order: Order | None, payload: OrderCreated) -> Order:
    return create_order(payload.customer_id, payload.items, order_id=payload.order_id)


def _apply_status_changed(order: Order, payload: OrderStatusChanged) -> Order:
    return change_status(order, payload.new_status)


def _apply_item_added(order: Order, payload: OrderItemAdded) -> Order:
    return add_item(order, payload.item)


def _apply_item_removed(order: Order, payload: OrderItemRemoved) -> Order:
    return remove_item(order, payload.product_id)


# One entry per replayable kind; rollbacks never reach the dispatch table
APPLIERS: dict[EventKind, Callable[[Order | None, BaseModel], Order]] = {
    EventKind.ORDER_CREATED: _apply_created,  # type: ignore[dict-item]
    EventKind.STATUS_CHANGED: _apply_status_changed,  # type: ignore[dict-item]
    EventKind.ITEM_ADDED: _apply_item_added,  # type: ignore[dict-item]
    EventKind.ITEM_REMOVED: _apply_item_removed,  # type: ignore[dict-item]
}


def select_replay_events(events: Iterable[Event]) -> list[Event]:
    """
    The events rebuild() applies, in version order

    Raises:
        DataIntegrityError: If the active rollback cannot be interpreted
    """
    ordered = sorted(events, key=lambda event: event.version)
    rollbacks = [event for event in ordered if is_rollback(event)]

    if not rollbacks:
        return ordered

    active = max(rollbacks, key=lambda event: event.version)
    return replay_window(ordered, active)


def apply_event(order: Order | None, event: Event) -> Order | None:
    """
    Apply one non-rollback event to the current state

    Unknown kinds leave the state unchanged.

    Raises:
        DataIntegrityError: If the event cannot follow the current state
    """
    kind = EventKind.parse(event.kind)

    if kind is None:
        logger.warning(
            "Skipping unrecognized event kind",
            aggregate_id=event.aggregate_id,
            version=event.version,
            kind=event.kind,
        )
        unknown_events_skipped_total.labels(kind=event.kind).inc()
        return order

    if kind == EventKind.ROLLED_BACK:
        return order

    if kind == EventKind.ORDER_CREATED and order is not None:
        raise DataIntegrityError(event.aggregate_id, "order created twice", event.version)
    if kind != EventKind.ORDER_CREATED and order is None:
        raise DataIntegrityError(
            event.aggregate_id,
            f"{event.kind} before OrderCreated",
            event.version,
        )

    try:
        payload = PAYLOAD_MODELS[kind].model_validate(event.payload)
        return APPLIERS[kind](order, payload)
    except ValidationError as e:
        raise DataIntegrityError(
            event.aggregate_id, f"malformed {event.kind} payload", event.version
        ) from e
    except InvariantViolation as e:
        raise DataIntegrityError(
            event.aggregate_id, f"stored {event.kind} is illegal here: {e}", event.version
        ) from e


def rebuild(events: Iterable[Event]) -> Order | None:
    """
    Reconstruct an order from its event log

    Args:
        events: Every event of one aggregate, in any order

    Returns:
        The order, or None if the log is empty or the active rollback leaves
        nothing to replay

    Raises:
        DataIntegrityError: If the log does not describe a valid order
    """
    events = list(events)
    if not events:
        return None

    start = time.perf_counter()
    replay_set = select_replay_events(events)

    order: Order | None = None
    for event in replay_set:
        order = apply_event(order, event)

    replayed_events_total.inc(len(replay_set))
    replay_duration_seconds.observe(time.perf_counter() - start)
    return order


def rebuild_at_version(events: Iterable[Event], version: int) -> Order | None:
    """
    Historical state as it was once version had been recorded

    Rollbacks recorded at or before version are honored exactly as they
    were at that point.
    """
    return rebuild(event for event in events if event.version <= version)
