"""
Rollback Resolver - where a rollback lands and what it discards

A rollback never deletes anything. It is an OrderRolledBack event that tells
replay which earlier events to treat as undone. This module answers three
questions about a log:

- Which version does a version rollback really restore? Rolling back to a
  version that is itself a rollback follows the chain down to real state.
- Which versions have been skipped by any rollback? Those can never become
  a rollback target again.
- Is a new rollback request acceptable?

All functions are pure and operate on an in-memory event list.
"""

from datetime import datetime
from typing import Iterable, Sequence

from pydantic import ValidationError

from order_ledger.kernel.errors import (
    AggregateNotFound,
    DataIntegrityError,
    InvalidRollbackTarget,
)
from order_ledger.kernel.events import Event
from order_ledger.kernel.time import parse_instant
from order_ledger.orders.events import (
    OrderRolledBack,
    RollbackDescriptor,
    RollbackTarget,
    RollbackType,
    is_rollback,
    rollback_payload,
)


def _try_rollback_payload(event: Event) -> OrderRolledBack | None:
    try:
        return rollback_payload(event)
    except ValidationError:
        return None


def _require_rollback_payload(event: Event) -> OrderRolledBack:
    try:
        return rollback_payload(event)
    except ValidationError as e:
        raise DataIntegrityError(
            event.aggregate_id, "malformed rollback payload", event.version
        ) from e


def _require_cutoff(event: Event, data: OrderRolledBack) -> datetime:
    try:
        return parse_instant(str(data.rollback_value))
    except ValueError as e:
        raise DataIntegrityError(
            event.aggregate_id, "rollback timestamp is not an instant", event.version
        ) from e


def resolve_effective_version(events: Iterable[Event], requested_version: int) -> int:
    """
    Follow chains of version rollbacks to the version they really restore

    While the event at the candidate version is a version rollback, its own
    target becomes the next candidate. Resolution stops at a non-rollback
    event, a missing version, a timestamp rollback, or a version already
    visited.

    Example:
        v1 Created, v2 ItemAdded, v3 RolledBack(→1), v4 ItemAdded,
        v5 RolledBack(→3): resolving 3 yields 1.
    """
    by_version = {event.version: event for event in events}
    current = requested_version
    visited: set[int] = set()

    while current not in visited:
        visited.add(current)
        event = by_version.get(current)
        if event is None or not is_rollback(event):
            break
        data = _try_rollback_payload(event)
        if data is None or data.target_version is None:
            break
        current = data.target_version

    return current


def replay_window(events: Sequence[Event], active: Event) -> list[Event]:
    """
    Non-rollback events replay keeps under one active rollback

    Keeps everything at or before the rollback point (resolved version, or
    timestamp cutoff) plus everything recorded after the rollback itself.
    Result is in version order.

    Raises:
        DataIntegrityError: If the rollback payload cannot be interpreted
    """
    data = _require_rollback_payload(active)
    non_rollback = [event for event in events if not is_rollback(event)]

    if data.rollback_type == RollbackType.VERSION:
        if data.target_version is None:
            raise DataIntegrityError(
                active.aggregate_id, "version rollback without integer target", active.version
            )
        target = resolve_effective_version(events, data.target_version)
        keep = [
            event
            for event in non_rollback
            if event.version <= target or event.version > active.version
        ]
    else:
        cutoff = _require_cutoff(active, data)
        keep = [
            event
            for event in non_rollback
            if event.timestamp <= cutoff or event.version > active.version
        ]

    return sorted(keep, key=lambda event: event.version)


def _skipped_by(events: Sequence[Event], rollback: Event) -> set[int]:
    data = _require_rollback_payload(rollback)
    non_rollback = [event for event in events if not is_rollback(event)]

    if data.rollback_type == RollbackType.VERSION:
        if data.target_version is None:
            return set()
        return {
            event.version
            for event in non_rollback
            if data.target_version < event.version < rollback.version
        }

    cutoff = _require_cutoff(rollback, data)
    return {
        event.version
        for event in non_rollback
        if event.timestamp > cutoff and event.version < rollback.version
    }


def compute_skipped_versions(events: Iterable[Event]) -> set[int]:
    """
    Versions permanently excluded as future rollback targets

    Unions the contribution of every rollback in the log, including ones a
    later rollback superseded for replay purposes.

    Raises:
        DataIntegrityError: If a rollback payload cannot be interpreted
    """
    ordered = sorted(events, key=lambda event: event.version)
    skipped: set[int] = set()
    for event in ordered:
        if is_rollback(event):
            skipped |= _skipped_by(ordered, event)
    return skipped


def validate_rollback_request(
    events: Sequence[Event],
    to_version: int | None = None,
    to_timestamp: str | datetime | None = None,
    *,
    aggregate_id: str | None = None,
) -> RollbackTarget:
    """
    Check a rollback request against the log it would be appended to

    Exactly one of to_version and to_timestamp must be given.

    Returns:
        The target to record in the OrderRolledBack event

    Raises:
        InvalidRollbackTarget: On an ambiguous or malformed request, a
            version out of range, a skipped version (as requested or after
            resolving nested rollbacks), or a target that would leave nothing
            to replay
        AggregateNotFound: If the log is empty
    """
    if to_version is not None and to_timestamp is not None:
        raise InvalidRollbackTarget("provide only one of to_version or to_timestamp")
    if to_version is None and to_timestamp is None:
        raise InvalidRollbackTarget("either to_version or to_timestamp is required")

    ordered = sorted(events, key=lambda event: event.version)
    if not ordered:
        raise AggregateNotFound(aggregate_id or "<unknown>")
    current_version = ordered[-1].version
    non_rollback = [event for event in ordered if not is_rollback(event)]

    if to_version is not None:
        if isinstance(to_version, bool) or not isinstance(to_version, int) or to_version < 1:
            raise InvalidRollbackTarget("to_version must be a positive integer")
        if to_version > current_version:
            raise InvalidRollbackTarget(
                f"version {to_version} is beyond current version {current_version}"
            )

        skipped = compute_skipped_versions(ordered)
        if to_version in skipped:
            raise InvalidRollbackTarget(
                f"version {to_version} was skipped by an earlier rollback"
            )
        effective = resolve_effective_version(ordered, to_version)
        if effective in skipped:
            raise InvalidRollbackTarget(
                f"version {to_version} resolves to version {effective}, "
                f"which was skipped by an earlier rollback"
            )
        if not any(event.version <= effective for event in non_rollback):
            raise InvalidRollbackTarget(f"no events at or before version {effective}")

        return RollbackTarget(
            rollback_type=RollbackType.VERSION,
            rollback_value=to_version,
            requested_version=to_version,
            effective_version=effective,
        )

    try:
        cutoff = parse_instant(to_timestamp)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidRollbackTarget(f"to_timestamp is not a valid instant: {to_timestamp!r}") from e

    if not any(event.timestamp <= cutoff for event in non_rollback):
        raise InvalidRollbackTarget(
            f"no events recorded at or before {cutoff.isoformat()}"
        )

    return RollbackTarget(
        rollback_type=RollbackType.TIMESTAMP,
        rollback_value=cutoff.isoformat(),
        cutoff=cutoff,
    )


def describe_rollbacks(events: Iterable[Event]) -> list[RollbackDescriptor]:
    """
    Read-time description of every rollback in the log

    events_undone counts the earlier non-rollback events each rollback
    excluded from replay when it was recorded; skipped_versions is that
    rollback's own contribution to the skipped set.
    """
    ordered = sorted(events, key=lambda event: event.version)
    descriptors: list[RollbackDescriptor] = []

    for index, event in enumerate(ordered):
        if not is_rollback(event):
            continue
        data = _require_rollback_payload(event)
        history = ordered[: index + 1]
        earlier = [e for e in history if e.version < event.version and not is_rollback(e)]
        kept = replay_window(history, event)

        effective = None
        if data.target_version is not None:
            effective = resolve_effective_version(history, data.target_version)

        descriptors.append(
            RollbackDescriptor(
                version=event.version,
                timestamp=event.timestamp,
                rollback_type=data.rollback_type,
                rollback_value=data.rollback_value,
                effective_version=effective,
                events_undone=len(earlier) - len(kept),
                skipped_versions=sorted(_skipped_by(history, event)),
            )
        )

    return descriptors
