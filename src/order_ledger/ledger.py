"""
OrderLedger - main façade

The façade is the only place where the store, the clock and the command
handlers meet. Every write follows the same path:

    read_all → rebuild → handler decides → append(event, expected_version)

Reads never cache state: each query replays the log as it is now.

Example:
    >>> from order_ledger import OrderLedger
    >>> ledger = OrderLedger()
    >>> order = ledger.create_order("c1", [{"product_id": "A",
    ...     "product_name": "Laptop", "quantity": 1, "price": "100"}])
    >>> ledger.change_status(order.id, "CONFIRMED").status
    <OrderStatus.CONFIRMED: 'CONFIRMED'>
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from order_ledger import __version__
from order_ledger.kernel.config import LedgerSettings
from order_ledger.kernel.errors import (
    ConcurrencyConflict,
    DataIntegrityError,
    InvalidAggregateState,
    InvalidItem,
    InvalidRollbackTarget,
)
from order_ledger.kernel.event_store import (
    EventStore,
    EventStoreStats,
    SupportsDiagnostics,
    create_event_store,
    summarize_events,
)
from order_ledger.kernel.events import Event
from order_ledger.kernel.logging import LogOperation, get_logger
from order_ledger.kernel.metrics import rollbacks_recorded_total, track_command_duration
from order_ledger.kernel.retry import retry_on_conflict
from order_ledger.kernel.time import SystemClock, TimeProvider
from order_ledger.orders.commands import (
    AddOrderItem,
    ChangeOrderStatus,
    CreateOrder,
    RemoveOrderItem,
    RollbackOrder,
)
from order_ledger.orders.events import RollbackDescriptor
from order_ledger.orders.handlers import OrderCommandHandlers, RollbackOutcome, current_version
from order_ledger.orders.invariants import coerce_status
from order_ledger.orders.models import Order, OrderItem, OrderStatus
from order_ledger.orders.queries import Page, group_by_aggregate, newest_first, paginate
from order_ledger.orders.replay import rebuild, rebuild_at_version
from order_ledger.orders.rollback import compute_skipped_versions, describe_rollbacks

logger = get_logger(__name__)

ItemInput = OrderItem | dict[str, Any]


class LedgerHealth(BaseModel):
    """Liveness summary for operators"""

    status: Literal["ok", "degraded"]
    backend: str
    store_healthy: bool
    checked_at: datetime
    version: str


def _to_item(value: ItemInput) -> OrderItem:
    if isinstance(value, OrderItem):
        return value
    return OrderItem.model_validate(value)


class OrderLedger:
    """
    Event-sourced order ledger

    Commands issued without expected_version are retried on
    ConcurrencyConflict (settings.conflict_retries attempts), re-reading the
    log each time. Commands issued with expected_version surface the
    conflict to the caller. Business-rule violations are never retried.
    """

    def __init__(
        self,
        event_store: EventStore | None = None,
        time_provider: TimeProvider | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        """
        Args:
            event_store: Backend to use (built from settings if None)
            time_provider: Clock for event timestamps (system clock if None)
            settings: Ledger settings (defaults if None)
        """
        self.settings = settings or LedgerSettings()
        self.time_provider = time_provider or SystemClock()
        self.event_store = (
            event_store if event_store is not None else create_event_store(self.settings)
        )
        self.handlers = OrderCommandHandlers(self.time_provider)

    @property
    def backend(self) -> str:
        return self.event_store.backend

    def _execute(
        self,
        order_id: str,
        expected_version: int | None,
        decide: Callable[[list[Event]], Event],
    ) -> tuple[list[Event], Event]:
        """Read, decide, append; retried on conflict only when no version was supplied"""

        def attempt() -> tuple[list[Event], Event]:
            events = self.event_store.read_all(order_id)
            actual = current_version(events)
            if expected_version is not None and expected_version != actual:
                raise ConcurrencyConflict(order_id, expected_version, actual)
            event = decide(events)
            self.event_store.append(event, expected_version=actual)
            return events, event

        if expected_version is not None:
            return attempt()
        return retry_on_conflict(max_attempts=self.settings.conflict_retries)(attempt)()

    # Commands

    @track_command_duration("create_order")
    def create_order(
        self,
        customer_id: str,
        items: Iterable[ItemInput],
        order_id: str | None = None,
    ) -> Order:
        """
        Place a new order

        Args:
            customer_id: Who places the order
            items: OrderItem values or dicts with product_id, product_name,
                quantity and price
            order_id: Identity to use (generated if None)

        Returns:
            The new PENDING order

        Raises:
            InvalidAggregateState: If customer or items are invalid
            ConcurrencyConflict: If order_id is already taken
        """
        with LogOperation(logger, "create_order", customer_id=customer_id, order_id=order_id):
            try:
                command = CreateOrder(
                    customer_id=customer_id,
                    items=[_to_item(item) for item in items],
                    order_id=order_id,
                )
            except ValidationError as e:
                raise InvalidAggregateState(f"Invalid order data: {e}") from e

            event = self.handlers.handle_create_order(command)
            self.event_store.append(event, expected_version=0)
            order = self._after([], event)
            logger.info("Order created", order_id=order.id, items=len(order.items))
            return order

    @track_command_duration("change_status")
    def change_status(
        self,
        order_id: str,
        new_status: OrderStatus | str,
        expected_version: int | None = None,
    ) -> Order:
        """
        Move an order to a new status

        Raises:
            AggregateNotFound: If the order does not exist
            InvalidTransition: If the status graph has no such edge
            ConcurrencyConflict: If expected_version is stale
        """
        status = coerce_status(new_status)
        with LogOperation(logger, "change_status", order_id=order_id, new_status=status.value):
            try:
                command = ChangeOrderStatus(
                    order_id=order_id,
                    new_status=status,
                    expected_version=expected_version,
                )
            except ValidationError as e:
                raise InvalidAggregateState(f"Invalid status change: {e}") from e

            events, event = self._execute(
                order_id,
                expected_version,
                lambda events: self.handlers.handle_change_status(command, events),
            )
            return self._after(events, event)

    @track_command_duration("add_item")
    def add_item(
        self,
        order_id: str,
        item: ItemInput,
        expected_version: int | None = None,
    ) -> Order:
        """
        Add a product line

        Raises:
            AggregateNotFound: If the order does not exist
            InvalidAggregateState: If the order is SHIPPED, DELIVERED or CANCELLED
            InvalidItem: If the item data is unusable
            DuplicateItem: If the product is already present
            ConcurrencyConflict: If expected_version is stale
        """
        with LogOperation(logger, "add_item", order_id=order_id):
            try:
                command = AddOrderItem(
                    order_id=order_id, item=_to_item(item), expected_version=expected_version
                )
            except ValidationError as e:
                raise InvalidItem(f"Invalid item data: {e}") from e

            events, event = self._execute(
                order_id,
                expected_version,
                lambda events: self.handlers.handle_add_item(command, events),
            )
            return self._after(events, event)

    @track_command_duration("remove_item")
    def remove_item(
        self,
        order_id: str,
        product_id: str,
        expected_version: int | None = None,
    ) -> Order:
        """
        Remove a product line

        Raises:
            AggregateNotFound: If the order does not exist
            InvalidAggregateState: If the order is SHIPPED, DELIVERED or CANCELLED
            ItemNotFound: If the product is absent
            LastItemRemoval: If it is the only item
            ConcurrencyConflict: If expected_version is stale
        """
        with LogOperation(logger, "remove_item", order_id=order_id, product_id=product_id):
            try:
                command = RemoveOrderItem(
                    order_id=order_id, product_id=product_id, expected_version=expected_version
                )
            except ValidationError as e:
                raise InvalidAggregateState(f"Invalid item removal: {e}") from e

            events, event = self._execute(
                order_id,
                expected_version,
                lambda events: self.handlers.handle_remove_item(command, events),
            )
            return self._after(events, event)

    @track_command_duration("rollback")
    def rollback(
        self,
        order_id: str,
        to_version: int | None = None,
        to_timestamp: datetime | str | None = None,
        expected_version: int | None = None,
    ) -> RollbackOutcome:
        """
        Roll an order back to an earlier version or instant

        Appends an OrderRolledBack event; nothing already stored changes.

        Raises:
            AggregateNotFound: If the order does not exist
            InvalidRollbackTarget: If the target is malformed, skipped, out of
                range, or leaves nothing to replay
            ConcurrencyConflict: If expected_version is stale
        """
        with LogOperation(
            logger,
            "rollback",
            order_id=order_id,
            to_version=to_version,
            to_timestamp=str(to_timestamp) if to_timestamp is not None else None,
        ):
            try:
                command = RollbackOrder(
                    order_id=order_id,
                    to_version=to_version,
                    to_timestamp=to_timestamp,
                    expected_version=expected_version,
                )
            except ValidationError as e:
                raise InvalidRollbackTarget(f"Malformed rollback request: {e}") from e

            outcomes: list[RollbackOutcome] = []

            def decide(events: list[Event]) -> Event:
                outcome = self.handlers.handle_rollback(command, events)
                outcomes.append(outcome)
                return outcome.event

            self._execute(order_id, expected_version, decide)
            outcome = outcomes[-1]

            rollbacks_recorded_total.labels(
                rollback_type=outcome.event.payload["rollback_type"]
            ).inc()
            logger.info(
                "Order rolled back",
                order_id=order_id,
                rollback_version=outcome.event.version,
                events_undone=outcome.events_undone,
            )
            return outcome

    def _after(self, events: list[Event], event: Event) -> Order:
        order = rebuild([*events, event])
        if order is None:
            raise DataIntegrityError(
                event.aggregate_id, "no order after appending event", event.version
            )
        return order

    # Queries

    def get_order(self, order_id: str) -> Order | None:
        """Current state of an order, or None if it does not exist"""
        return rebuild(self.event_store.read_all(order_id))

    def get_order_at_version(self, order_id: str, version: int) -> Order | None:
        """State of an order as it was once version had been recorded"""
        return rebuild_at_version(self.event_store.read_all(order_id), version)

    def get_events(self, order_id: str) -> list[Event]:
        """Raw event log of an order, in version order"""
        return self.event_store.read_all(order_id)

    def list_orders(self, page: int = 1, limit: int = 10) -> Page[Order]:
        """
        Every order that currently exists, paginated

        Orders whose log cannot be replayed are logged and left out rather
        than failing the whole listing.
        """
        orders: list[Order] = []
        for order_id, events in group_by_aggregate(self.event_store.read_everything()).items():
            try:
                order = rebuild(events)
            except DataIntegrityError as e:
                logger.warning(
                    "Skipping order with inconsistent log",
                    order_id=order_id,
                    reason=e.reason,
                    version=e.version,
                )
                continue
            if order is not None:
                orders.append(order)
        return paginate(orders, page, limit)

    def list_events(self, page: int = 1, limit: int = 20) -> Page[Event]:
        """Events across all orders, newest first"""
        return paginate(newest_first(self.event_store.read_everything()), page, limit)

    def skipped_versions(self, order_id: str) -> list[int]:
        """Versions no future rollback of this order may target, ascending"""
        return sorted(compute_skipped_versions(self.event_store.read_all(order_id)))

    def describe_rollbacks(self, order_id: str) -> list[RollbackDescriptor]:
        """Every rollback of an order with its read-time effects"""
        return describe_rollbacks(self.event_store.read_all(order_id))

    def stats(self) -> EventStoreStats:
        """Event and order counts (computed by the store when it supports it)"""
        if isinstance(self.event_store, SupportsDiagnostics):
            return self.event_store.stats()
        return summarize_events(self.event_store.read_everything(), self.backend)

    def health(self) -> LedgerHealth:
        """Whether the event store answers"""
        healthy = True
        if isinstance(self.event_store, SupportsDiagnostics):
            healthy = self.event_store.health_check()
        return LedgerHealth(
            status="ok" if healthy else "degraded",
            backend=self.backend,
            store_healthy=healthy,
            checked_at=self.time_provider.now(),
            version=__version__,
        )
