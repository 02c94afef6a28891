"""
Orders Module - the order aggregate, its events and its reconstruction

- Immutable Order values with a status graph and item rules
- Event kinds and payloads recorded in the order log
- Deterministic replay with rollback resolution
- Skipped-version protection for future rollbacks
"""

from order_ledger.orders.events import EventKind, RollbackDescriptor, RollbackType
from order_ledger.orders.models import Order, OrderItem, OrderStatus
from order_ledger.orders.replay import rebuild
from order_ledger.orders.rollback import (
    compute_skipped_versions,
    resolve_effective_version,
    validate_rollback_request,
)

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "EventKind",
    "RollbackType",
    "RollbackDescriptor",
    "rebuild",
    "resolve_effective_version",
    "compute_skipped_versions",
    "validate_rollback_request",
]
