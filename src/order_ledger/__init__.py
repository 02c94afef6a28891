"""
Order Ledger - Event-sourced order management

Every change to an order is an immutable event in an append-only log.
Current and historical state are rebuilt by replay, writes use optimistic
concurrency, and rollbacks are recorded as new events rather than by
rewriting history.
"""

__version__ = "0.1.0"

from order_ledger.ledger import OrderLedger  # noqa: E402

__all__ = ["OrderLedger", "__version__"]
