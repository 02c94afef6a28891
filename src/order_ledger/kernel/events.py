"""
Event record for the order log

Events are immutable facts about an order. The log of events for an
aggregate is the only source of truth; current state is always derived by
replaying it.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from order_ledger.kernel.time import ensure_aware


class Event(BaseModel):
    """
    A single entry of an aggregate's append-only log

    (aggregate_id, version) positions the event uniquely; version is the
    sole ordering key. The timestamp is data used by timestamp rollbacks,
    never an ordering key.
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier (UUIDv7 for time-ordering)",
    )

    aggregate_id: str = Field(
        ...,
        min_length=1,
        description="Order identity this event belongs to",
    )

    aggregate_type: str = Field(
        default="order",
        description="Type of aggregate the log describes",
    )

    version: int = Field(
        ...,
        ge=1,
        description="Position in the aggregate log (1-based, contiguous)",
    )

    kind: str = Field(
        ...,
        min_length=1,
        description="Event kind tag, e.g. 'OrderCreated', 'OrderRolledBack'",
    )

    timestamp: datetime = Field(
        ...,
        description="UTC instant the event was recorded",
    )

    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific data (must be JSON-serializable)",
    )

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "eventId": "01908e9a-3b87-7000-8000-123456789abc",
                    "aggregateId": "ord-001",
                    "aggregateType": "order",
                    "version": 1,
                    "kind": "OrderCreated",
                    "timestamp": "2025-01-15T10:30:00Z",
                    "payload": {
                        "order_id": "ord-001",
                        "customer_id": "c1",
                        "items": [
                            {
                                "product_id": "A",
                                "product_name": "Laptop",
                                "quantity": 1,
                                "price": "100",
                            }
                        ],
                    },
                }
            ]
        },
    )

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape used at the store boundary"""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Event":
        """Parse the camelCase wire shape (snake_case keys are accepted too)"""
        return cls.model_validate(data)


def create_event(
    *,
    event_id: str,
    aggregate_id: str,
    version: int,
    kind: str,
    timestamp: datetime,
    payload: dict[str, Any] | None = None,
    aggregate_type: str = "order",
) -> Event:
    """
    Factory function for creating events with all required fields

    Keeps construction keyword-only so call sites read like the wire shape.
    """
    return Event(
        event_id=event_id,
        aggregate_id=aggregate_id,
        aggregate_type=aggregate_type,
        version=version,
        kind=kind,
        timestamp=timestamp,
        payload=payload or {},
    )
