"""
Test Helper Functions - Event and item builders

Builders construct raw events directly, bypassing handlers, so replay and
rollback can be tested on hand-made logs (including corrupt ones).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from order_ledger.kernel.events import Event, create_event
from order_ledger.kernel.ids import generate_id
from order_ledger.orders.models import OrderItem

BASE_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
ORDER_ID = "ord-test-1"


def item(
    product_id: str,
    quantity: int = 1,
    price: str | int = "100",
    name: str | None = None,
) -> OrderItem:
    """Builder for order items (price as string keeps Decimal exact)"""
    return OrderItem(
        product_id=product_id,
        product_name=name or f"Product {product_id}",
        quantity=quantity,
        price=Decimal(str(price)),
    )


def item_dict(product_id: str, quantity: int = 1, price: str = "100") -> dict[str, Any]:
    return item(product_id, quantity, price).model_dump(mode="json")


def at(version: int) -> datetime:
    """Deterministic timestamp: one minute per version after BASE_TIME"""
    return BASE_TIME + timedelta(minutes=version)


def make_event(
    version: int,
    kind: str,
    payload: dict[str, Any],
    *,
    order_id: str = ORDER_ID,
    timestamp: datetime | None = None,
) -> Event:
    return create_event(
        event_id=generate_id(),
        aggregate_id=order_id,
        version=version,
        kind=kind,
        timestamp=timestamp or at(version),
        payload=payload,
    )


def created(
    version: int = 1,
    items: list[OrderItem] | None = None,
    customer_id: str = "c1",
    **kwargs: Any,
) -> Event:
    items = items or [item("A", 1, "100")]
    return make_event(
        version,
        "OrderCreated",
        {
            "order_id": kwargs.get("order_id", ORDER_ID),
            "customer_id": customer_id,
            "items": [i.model_dump(mode="json") for i in items],
            "status": "PENDING",
        },
        **kwargs,
    )


def status_changed(version: int, old: str, new: str, **kwargs: Any) -> Event:
    return make_event(
        version,
        "OrderStatusChanged",
        {"order_id": ORDER_ID, "old_status": old, "new_status": new},
        **kwargs,
    )


def item_added(version: int, new_item: OrderItem, **kwargs: Any) -> Event:
    return make_event(
        version,
        "OrderItemAdded",
        {"order_id": ORDER_ID, "item": new_item.model_dump(mode="json")},
        **kwargs,
    )


def item_removed(version: int, product_id: str, **kwargs: Any) -> Event:
    return make_event(
        version,
        "OrderItemRemoved",
        {"order_id": ORDER_ID, "product_id": product_id},
        **kwargs,
    )


def rolled_back(version: int, target: int, **kwargs: Any) -> Event:
    return make_event(
        version,
        "OrderRolledBack",
        {
            "order_id": ORDER_ID,
            "rollback_type": "version",
            "rollback_value": target,
            "rollback_point": f"Version {target}",
        },
        **kwargs,
    )


def rolled_back_to_time(version: int, cutoff: datetime, **kwargs: Any) -> Event:
    return make_event(
        version,
        "OrderRolledBack",
        {
            "order_id": ORDER_ID,
            "rollback_type": "timestamp",
            "rollback_value": cutoff.isoformat(),
            "rollback_point": f"Timestamp {cutoff.isoformat()}",
        },
        **kwargs,
    )
