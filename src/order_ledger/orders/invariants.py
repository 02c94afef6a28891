"""
Order Invariants - business rules every order value must satisfy

Each transition is a pure function: it validates, then returns a new Order.
The same functions drive command handling and replay, so a stored event can
only describe a change that was legal when it was decided.
"""

from decimal import Decimal
from typing import Iterable, Literal

from order_ledger.kernel.errors import (
    DuplicateItem,
    InvalidAggregateState,
    InvalidItem,
    InvalidTransition,
    ItemNotFound,
    LastItemRemoval,
)
from order_ledger.kernel.ids import generate_order_id
from order_ledger.orders.models import Order, OrderItem, OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

Operation = Literal["add_item", "remove_item"]


def item_problem(item: OrderItem) -> str | None:
    """Describe what is wrong with an item, or None when it is valid"""
    if not item.product_id.strip():
        return "Product ID is required"
    if not item.product_name.strip():
        return "Product name is required"
    if item.quantity <= 0:
        return "Quantity must be positive"
    if item.price <= Decimal("0"):
        return "Price must be positive"
    return None


def validate_item(item: OrderItem) -> None:
    """
    Raises:
        InvalidItem: If the item carries unusable data
    """
    problem = item_problem(item)
    if problem is not None:
        raise InvalidItem(f"{problem} (product {item.product_id!r})")


def create_order(
    customer_id: str,
    items: Iterable[OrderItem],
    *,
    order_id: str | None = None,
) -> Order:
    """
    Build a new PENDING order

    Args:
        customer_id: Who places the order
        items: At least one valid item, product ids unique
        order_id: Identity to use (generated when omitted)

    Raises:
        InvalidAggregateState: On a missing customer, no items, an invalid
            item, or a repeated product id
    """
    items = tuple(items)

    if not customer_id or not customer_id.strip():
        raise InvalidAggregateState("Customer ID is required")
    if not items:
        raise InvalidAggregateState("Order must have at least one item")

    seen: set[str] = set()
    for index, item in enumerate(items, start=1):
        problem = item_problem(item)
        if problem is not None:
            raise InvalidAggregateState(f"Item {index}: {problem}")
        if item.product_id in seen:
            raise InvalidAggregateState(
                f"Item {index}: Product {item.product_id} appears more than once"
            )
        seen.add(item.product_id)

    return Order(
        id=order_id or generate_order_id(),
        customer_id=customer_id,
        items=items,
        status=OrderStatus.PENDING,
    )


def coerce_status(value: OrderStatus | str) -> OrderStatus:
    """
    Raises:
        InvalidAggregateState: If value names no known status
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise InvalidAggregateState(f"Unknown order status: {value!r}")
    try:
        return OrderStatus(value.upper())
    except ValueError as e:
        raise InvalidAggregateState(f"Unknown order status: {value}") from e


def change_status(order: Order, new_status: OrderStatus | str) -> Order:
    """
    Move an order along the status graph

    Requesting the current status is a no-op and returns the same value.

    Raises:
        InvalidTransition: If (current, new) is not an edge of the graph
    """
    target = coerce_status(new_status)
    if target == order.status:
        return order
    if target not in ALLOWED_TRANSITIONS[order.status]:
        raise InvalidTransition(order.status.value, target.value)
    return order.model_copy(update={"status": target})


def add_item(order: Order, item: OrderItem) -> Order:
    """
    Append an item (insertion order preserved)

    Raises:
        InvalidItem: If the item data is unusable
        DuplicateItem: If the product is already in the order
    """
    validate_item(item)
    if order.has_item(item.product_id):
        raise DuplicateItem(item.product_id)
    return order.model_copy(update={"items": order.items + (item,)})


def remove_item(order: Order, product_id: str) -> Order:
    """
    Drop the line for a product

    Raises:
        ItemNotFound: If the product is not in the order
        LastItemRemoval: If it is the only remaining item
    """
    if not order.has_item(product_id):
        raise ItemNotFound(product_id)
    remaining = tuple(item for item in order.items if item.product_id != product_id)
    if not remaining:
        raise LastItemRemoval(product_id)
    return order.model_copy(update={"items": remaining})


def ensure_operation_allowed(order: Order, operation: Operation) -> None:
    """
    Gate commands on the order's lifecycle state

    Items may only change while an order is PENDING or CONFIRMED. Status
    changes need no gate here: terminal states have no outgoing edges, so
    change_status already rejects them with InvalidTransition. Applied when
    deciding commands, never during replay.

    Raises:
        InvalidAggregateState: If the operation is not allowed in this state
    """
    status = order.status.value
    if operation == "add_item" and not order.can_add_items():
        raise InvalidAggregateState(f"Cannot add items to order in {status} status")
    if operation == "remove_item" and not order.can_remove_items():
        raise InvalidAggregateState(f"Cannot remove items from order in {status} status")
