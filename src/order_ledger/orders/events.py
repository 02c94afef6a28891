"""
Order Events - facts recorded in an order's log

Events are named in past tense: they describe changes that were already
decided. Payload models define the JSON stored in Event.payload; the
kernel Event keeps kind as a plain string so logs containing kinds this code
does not know can still be read.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from order_ledger.kernel.events import Event
from order_ledger.orders.models import OrderItem, OrderStatus


class EventKind(str, Enum):
    """Closed set of order event kinds"""

    ORDER_CREATED = "OrderCreated"
    STATUS_CHANGED = "OrderStatusChanged"
    ITEM_ADDED = "OrderItemAdded"
    ITEM_REMOVED = "OrderItemRemoved"
    ROLLED_BACK = "OrderRolledBack"

    @classmethod
    def parse(cls, kind: str) -> "EventKind | None":
        """Return the kind for a stored tag, or None when the tag is unknown"""
        try:
            return cls(kind)
        except ValueError:
            return None


class RollbackType(str, Enum):
    """What a rollback targets"""

    VERSION = "version"
    TIMESTAMP = "timestamp"


class OrderCreated(BaseModel):
    """
    A new order was placed

    status and total_amount describe the order as created; replay always
    derives both again from items.
    """

    order_id: str
    customer_id: str
    items: list[OrderItem]
    status: OrderStatus = OrderStatus.PENDING
    total_amount: Decimal | None = None


class OrderStatusChanged(BaseModel):
    """An order moved along the status graph"""

    order_id: str
    old_status: OrderStatus
    new_status: OrderStatus


class OrderItemAdded(BaseModel):
    """A product line was added"""

    order_id: str
    item: OrderItem


class OrderItemRemoved(BaseModel):
    """A product line was removed"""

    order_id: str
    product_id: str


class OrderRolledBack(BaseModel):
    """
    Replay must treat a range of earlier events as undone

    Nothing is deleted: the log keeps every event, and reconstruction reads
    this marker to decide which events to apply. rollback_value is the target
    version (int) for version rollbacks or an ISO-8601 instant for timestamp
    rollbacks.
    """

    order_id: str
    rollback_type: RollbackType
    rollback_value: int | str
    rollback_point: str = ""

    @property
    def target_version(self) -> int | None:
        if self.rollback_type == RollbackType.VERSION and isinstance(self.rollback_value, int):
            return self.rollback_value
        return None


class RollbackTarget(BaseModel):
    """A validated rollback request, ready to be recorded"""

    rollback_type: RollbackType
    rollback_value: int | str
    requested_version: int | None = None
    effective_version: int | None = None
    cutoff: datetime | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def rollback_point(self) -> str:
        if self.rollback_type == RollbackType.VERSION:
            return f"Version {self.rollback_value}"
        return f"Timestamp {self.rollback_value}"


class RollbackDescriptor(BaseModel):
    """
    Read-time view of one rollback event

    effective_version, events_undone and skipped_versions are derived from
    the log whenever the descriptor is built; none of them is stored.
    """

    version: int
    timestamp: datetime
    rollback_type: RollbackType
    rollback_value: int | str
    effective_version: int | None = None
    events_undone: int = 0
    skipped_versions: list[int] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


PAYLOAD_MODELS: dict[EventKind, type[BaseModel]] = {
    EventKind.ORDER_CREATED: OrderCreated,
    EventKind.STATUS_CHANGED: OrderStatusChanged,
    EventKind.ITEM_ADDED: OrderItemAdded,
    EventKind.ITEM_REMOVED: OrderItemRemoved,
    EventKind.ROLLED_BACK: OrderRolledBack,
}


def is_rollback(event: Event) -> bool:
    return event.kind == EventKind.ROLLED_BACK.value


def parse_payload(event: Event) -> BaseModel | None:
    """
    Validate an event payload against the model for its kind

    Returns None for unknown kinds. Raises pydantic.ValidationError when a
    known kind carries a malformed payload.
    """
    kind = EventKind.parse(event.kind)
    if kind is None:
        return None
    return PAYLOAD_MODELS[kind].model_validate(event.payload)


def rollback_payload(event: Event) -> OrderRolledBack:
    return OrderRolledBack.model_validate(event.payload)


def dump_payload(payload: BaseModel) -> dict[str, Any]:
    return payload.model_dump(mode="json")
