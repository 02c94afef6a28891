"""
Custom exceptions for the order ledger

A single hierarchy rooted at LedgerError lets callers translate failures
precisely: concurrency conflicts are retryable, business-rule violations are
caller-facing, and data integrity errors mean the log itself is suspect.
"""


class LedgerError(Exception):
    """Base exception for all order ledger errors"""

    pass


class ConfigurationError(LedgerError):
    """Raised when ledger settings cannot be turned into working components"""

    pass


class EventStoreError(LedgerError):
    """Base class for event store errors"""

    pass


class ConcurrencyConflict(EventStoreError):
    """
    Raised when the aggregate version doesn't match expected (optimistic locking)

    Another writer advanced the log first - caller should re-read and retry.
    """

    def __init__(
        self, aggregate_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Order {aggregate_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )

    @property
    def expected(self) -> int:
        return self.expected_version

    @property
    def actual(self) -> int:
        return self.actual_version


class AggregateNotFound(LedgerError):
    """Raised when a command targets an order that has no events"""

    def __init__(self, aggregate_id: str) -> None:
        self.aggregate_id = aggregate_id
        super().__init__(f"Order {aggregate_id} not found")


class DataIntegrityError(LedgerError):
    """
    Raised when replay meets an event sequence that cannot describe an order

    Examples: a log that does not start with OrderCreated, a second
    OrderCreated, or a stored event whose transition is illegal. The
    aggregate's log is presumed corrupt; no partial order is returned.
    """

    def __init__(
        self, aggregate_id: str, reason: str, version: int | None = None
    ) -> None:
        self.aggregate_id = aggregate_id
        self.reason = reason
        self.version = version
        location = f" at version {version}" if version is not None else ""
        super().__init__(f"Order {aggregate_id} log is inconsistent{location}: {reason}")


class InvalidRollbackTarget(LedgerError):
    """Raised when a rollback request is malformed or points somewhere it must not"""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid rollback target: {reason}")


# Business rule violations


class InvariantViolation(LedgerError):
    """
    Raised when an order business rule would be violated

    Always caller-facing and never retried automatically.
    """

    pass


class InvalidAggregateState(InvariantViolation):
    """Raised when an order cannot be created or changed in its current shape"""

    pass


class InvalidItem(InvariantViolation):
    """Raised when an order item carries unusable data"""

    pass


class DuplicateItem(InvariantViolation):
    """Raised when a product is added twice to the same order"""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} already exists in order")


class ItemNotFound(InvariantViolation):
    """Raised when removing a product the order does not hold"""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found in order")


class LastItemRemoval(InvariantViolation):
    """Raised when a removal would leave the order without items"""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(
            f"Cannot remove {product_id}: an order must always hold at least one item"
        )


class InvalidTransition(InvariantViolation):
    """Raised when a status change is not an edge of the status graph"""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition from {from_status} to {to_status}")
