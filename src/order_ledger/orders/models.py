"""
Order Domain Models - the reconstructed aggregate

An Order is never stored. It is the value obtained by replaying the order's
event log, and every transition yields a fresh value instead of mutating the
previous one.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class OrderStatus(str, Enum):
    """
    Order lifecycle states

    PENDING → CONFIRMED → SHIPPED → DELIVERED, with CANCELLED reachable
    from PENDING and CONFIRMED. DELIVERED and CANCELLED are terminal.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class OrderItem(BaseModel):
    """
    One product line of an order

    Business validation (positive quantity and price, non-empty identifiers)
    lives in orders.invariants so that violations surface as ledger errors.
    """

    product_id: str
    product_name: str
    quantity: int
    price: Decimal

    model_config = ConfigDict(frozen=True)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Order(BaseModel):
    """
    Order aggregate state

    Attributes:
        id: Order identity (the aggregate id of its log)
        customer_id: Who placed the order
        items: Product lines in insertion order, product_id unique
        status: Current lifecycle state
        total_amount: Always derived from items, never stored
    """

    id: str
    customer_id: str
    items: tuple[OrderItem, ...] = Field(default_factory=tuple)
    status: OrderStatus = OrderStatus.PENDING

    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_amount(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def has_item(self, product_id: str) -> bool:
        return any(item.product_id == product_id for item in self.items)

    def get_item(self, product_id: str) -> OrderItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def can_add_items(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def can_remove_items(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def can_update_status(self) -> bool:
        return not self.status.is_terminal

    def summary(self) -> dict[str, Any]:
        """Compact view for listings"""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status.value,
            "item_count": len(self.items),
            "total_amount": str(self.total_amount),
        }
