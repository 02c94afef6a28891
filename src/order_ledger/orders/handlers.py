"""
Order Command Handlers - Command→Event transformation

Each handler takes a command and the aggregate's current event list, then:
1. Rebuilds the order by replay
2. Validates the change with the same transitions replay uses
3. Returns the single event to append at current version + 1

Handlers never touch the store. The ledger façade loads events, calls a
handler, and appends the result with optimistic locking.
"""

from typing import Sequence

from pydantic import BaseModel, ConfigDict

from order_ledger.kernel.errors import (
    AggregateNotFound,
    DataIntegrityError,
    InvalidRollbackTarget,
)
from order_ledger.kernel.events import Event, create_event
from order_ledger.kernel.ids import generate_id, generate_order_id
from order_ledger.kernel.time import TimeProvider
from order_ledger.orders.commands import (
    AddOrderItem,
    ChangeOrderStatus,
    CreateOrder,
    RemoveOrderItem,
    RollbackOrder,
)
from order_ledger.orders.events import (
    EventKind,
    OrderCreated,
    OrderItemAdded,
    OrderItemRemoved,
    OrderRolledBack,
    OrderStatusChanged,
    dump_payload,
    is_rollback,
)
from order_ledger.orders.invariants import (
    add_item,
    change_status,
    create_order,
    ensure_operation_allowed,
    remove_item,
)
from order_ledger.orders.models import Order
from order_ledger.orders.replay import rebuild
from order_ledger.orders.rollback import replay_window, validate_rollback_request


class RollbackOutcome(BaseModel):
    """What a rollback did: the recorded event and the states around it"""

    event: Event
    original_order: Order
    rolled_back_order: Order
    events_undone: int

    model_config = ConfigDict(frozen=True)


def current_version(events: Sequence[Event]) -> int:
    return max((event.version for event in events), default=0)


class OrderCommandHandlers:
    """
    Command handlers for orders

    Stateless apart from the clock, so one instance can serve every thread.
    """

    def __init__(self, time_provider: TimeProvider) -> None:
        """
        Args:
            time_provider: Stamps event timestamps (injectable for testing)
        """
        self.time_provider = time_provider

    def _event(self, order_id: str, version: int, kind: EventKind, payload: BaseModel) -> Event:
        return create_event(
            event_id=generate_id(),
            aggregate_id=order_id,
            version=version,
            kind=kind.value,
            timestamp=self.time_provider.now(),
            payload=dump_payload(payload),
        )

    def _load(self, order_id: str, events: Sequence[Event]) -> Order:
        order = rebuild(events)
        if order is None:
            raise AggregateNotFound(order_id)
        return order

    def handle_create_order(self, command: CreateOrder) -> Event:
        """
        Handle CreateOrder

        Returns:
            OrderCreated event at version 1

        Raises:
            InvalidAggregateState: If customer or items are invalid
        """
        order = create_order(
            command.customer_id,
            command.items,
            order_id=command.order_id or generate_order_id(),
        )
        payload = OrderCreated(
            order_id=order.id,
            customer_id=order.customer_id,
            items=list(order.items),
            status=order.status,
            total_amount=order.total_amount,
        )
        return self._event(order.id, 1, EventKind.ORDER_CREATED, payload)

    def handle_change_status(
        self, command: ChangeOrderStatus, events: Sequence[Event]
    ) -> Event:
        """
        Handle ChangeOrderStatus

        Raises:
            AggregateNotFound: If the order has no events
            InvalidTransition: If the status graph has no such edge
        """
        order = self._load(command.order_id, events)
        change_status(order, command.new_status)

        payload = OrderStatusChanged(
            order_id=command.order_id,
            old_status=order.status,
            new_status=command.new_status,
        )
        return self._event(
            command.order_id, current_version(events) + 1, EventKind.STATUS_CHANGED, payload
        )

    def handle_add_item(self, command: AddOrderItem, events: Sequence[Event]) -> Event:
        """
        Handle AddOrderItem

        Raises:
            AggregateNotFound: If the order has no events
            InvalidAggregateState: If the order no longer accepts item changes
            InvalidItem: If the item data is unusable
            DuplicateItem: If the product is already present
        """
        order = self._load(command.order_id, events)
        ensure_operation_allowed(order, "add_item")
        add_item(order, command.item)

        payload = OrderItemAdded(order_id=command.order_id, item=command.item)
        return self._event(
            command.order_id, current_version(events) + 1, EventKind.ITEM_ADDED, payload
        )

    def handle_remove_item(
        self, command: RemoveOrderItem, events: Sequence[Event]
    ) -> Event:
        """
        Handle RemoveOrderItem

        Raises:
            AggregateNotFound: If the order has no events
            InvalidAggregateState: If the order no longer accepts item changes
            ItemNotFound: If the product is absent
            LastItemRemoval: If it is the only item left
        """
        order = self._load(command.order_id, events)
        ensure_operation_allowed(order, "remove_item")
        remove_item(order, command.product_id)

        payload = OrderItemRemoved(order_id=command.order_id, product_id=command.product_id)
        return self._event(
            command.order_id, current_version(events) + 1, EventKind.ITEM_REMOVED, payload
        )

    def handle_rollback(
        self, command: RollbackOrder, events: Sequence[Event]
    ) -> RollbackOutcome:
        """
        Handle RollbackOrder

        The rollback is an ordinary append: earlier events stay untouched and
        the new OrderRolledBack event changes what replay applies.

        Raises:
            AggregateNotFound: If the order has no events
            InvalidRollbackTarget: If the request is malformed, points at a
                skipped version, would leave nothing to replay, or would
                replay events that conflict with each other
        """
        target = validate_rollback_request(
            events,
            to_version=command.to_version,
            to_timestamp=command.to_timestamp,
            aggregate_id=command.order_id,
        )
        original = self._load(command.order_id, events)

        payload = OrderRolledBack(
            order_id=command.order_id,
            rollback_type=target.rollback_type,
            rollback_value=target.rollback_value,
            rollback_point=target.rollback_point,
        )
        event = self._event(
            command.order_id, current_version(events) + 1, EventKind.ROLLED_BACK, payload
        )

        # The stored log is sound; only this target re-admits clashing events
        try:
            rolled_back = rebuild([*events, event])
        except DataIntegrityError as e:
            raise InvalidRollbackTarget(
                f"{target.rollback_point} would replay conflicting events: {e.reason}"
            ) from e
        if rolled_back is None:
            raise InvalidRollbackTarget(f"{target.rollback_point} leaves no order to restore")

        kept = {e.version for e in replay_window([*events, event], event)}
        undone = sum(
            1 for e in events if not is_rollback(e) and e.version not in kept
        )
        return RollbackOutcome(
            event=event,
            original_order=original,
            rolled_back_order=rolled_back,
            events_undone=undone,
        )

