"""
Order Queries - cross-aggregate read helpers

Listings scan the whole log, group it per order and replay each group.
There is no read model to fall out of date: every listing is derived from
the events as they are now.
"""

import math
from collections.abc import Iterable, Sequence
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, computed_field

from order_ledger.kernel.events import Event

T = TypeVar("T")

MAX_PAGE_SIZE = 100


class Page(BaseModel, Generic[T]):
    """One page of a listing plus its pagination metadata"""

    items: list[T] = Field(default_factory=list)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_prev(self) -> bool:
        return self.page > 1


def paginate(values: Sequence[T], page: int, limit: int) -> Page[T]:
    """
    Slice values into one page

    page is 1-based; limit is clamped to 1..MAX_PAGE_SIZE and page to >= 1.
    """
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    offset = (page - 1) * limit
    return Page[T](
        items=list(values[offset : offset + limit]),
        page=page,
        limit=limit,
        total=len(values),
    )


def group_by_aggregate(events: Iterable[Event]) -> dict[str, list[Event]]:
    """Split a mixed event stream into per-order logs, first-seen order preserved"""
    grouped: dict[str, list[Event]] = {}
    for event in events:
        grouped.setdefault(event.aggregate_id, []).append(event)
    return grouped


def newest_first(events: Iterable[Event]) -> list[Event]:
    """Most recent events first; version breaks timestamp ties within an order"""
    return sorted(
        events,
        key=lambda event: (event.timestamp, event.version),
        reverse=True,
    )
