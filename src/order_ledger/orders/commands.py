"""
Order Commands - intentions to change an order

Commands can be rejected; events cannot. Handlers validate a command against
the replayed order and turn it into exactly one event.

expected_version carries the version the caller based its decision on. When
set, the append fails with ConcurrencyConflict if another writer got there
first.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from order_ledger.orders.models import OrderItem, OrderStatus


class CreateOrder(BaseModel):
    """Place a new order"""

    customer_id: str
    items: list[OrderItem]
    order_id: str | None = None


class ChangeOrderStatus(BaseModel):
    """Move an order along the status graph"""

    order_id: str = Field(..., min_length=1)
    new_status: OrderStatus
    expected_version: int | None = Field(default=None, ge=0)


class AddOrderItem(BaseModel):
    """Add a product line to an order"""

    order_id: str = Field(..., min_length=1)
    item: OrderItem
    expected_version: int | None = Field(default=None, ge=0)


class RemoveOrderItem(BaseModel):
    """Remove a product line from an order"""

    order_id: str = Field(..., min_length=1)
    product_id: str
    expected_version: int | None = Field(default=None, ge=0)


class RollbackOrder(BaseModel):
    """
    Roll an order back to an earlier version or instant

    Exactly one of to_version and to_timestamp must be set; the rollback
    validator enforces that so the error is an InvalidRollbackTarget.
    """

    order_id: str = Field(..., min_length=1)
    to_version: int | None = None
    to_timestamp: datetime | str | None = None
    expected_version: int | None = Field(default=None, ge=0)
