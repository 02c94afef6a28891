"""
Tests for the OrderLedger façade

Exercises the full read → decide → append path against real stores,
including optimistic concurrency, automatic conflict retries and the
non-destructive nature of rollbacks.
"""

from decimal import Decimal

import pytest

from order_ledger import OrderLedger
from order_ledger.kernel.config import LedgerSettings
from order_ledger.kernel.errors import (
    AggregateNotFound,
    ConcurrencyConflict,
    InvalidAggregateState,
    InvalidItem,
    InvalidRollbackTarget,
    InvalidTransition,
)
from order_ledger.kernel.events import Event
from order_ledger.kernel.memory_store import InMemoryEventStore
from order_ledger.kernel.metrics import commands_processed_total, rollbacks_recorded_total
from order_ledger.orders.models import OrderStatus
from tests.helpers import item, item_dict, make_event


class RacingStore(InMemoryEventStore):
    """
    Store where another writer slips in just before our appends

    Each of the first `races` appends of an OrderItemAdded event is preceded
    by a competing status change at the same version.
    """

    def __init__(self, races: int = 1) -> None:
        super().__init__()
        self.races = races

    def append(self, event: Event, expected_version: int | None = None) -> Event:
        if self.races > 0 and event.kind == "OrderItemAdded":
            self.races -= 1
            current = self.read_all(event.aggregate_id)[-1]
            payload = current.payload if current.kind == "OrderStatusChanged" else {}
            old = payload.get("new_status", "PENDING")
            intruder = make_event(
                event.version,
                "OrderStatusChanged",
                {
                    "order_id": event.aggregate_id,
                    "old_status": old,
                    "new_status": "CONFIRMED" if old == "PENDING" else old,
                },
                order_id=event.aggregate_id,
            )
            super().append(intruder)
        return super().append(event, expected_version)


def place(ledger: OrderLedger, order_id: str = "ord-1"):
    return ledger.create_order("c1", [item("A", 1, "100")], order_id=order_id)


class TestCommands:
    def test_create_order_from_dicts(self, ledger) -> None:
        order = ledger.create_order("c1", [item_dict("A", 2, "12.50"), item_dict("B")])

        assert order.status == OrderStatus.PENDING
        assert order.total_amount == Decimal("125")
        assert ledger.get_order(order.id) == order
        assert [e.kind for e in ledger.get_events(order.id)] == ["OrderCreated"]

    def test_create_order_rejects_malformed_item(self, ledger) -> None:
        bad = {"product_id": "A", "product_name": "A", "quantity": "lots", "price": "1"}
        with pytest.raises(InvalidAggregateState):
            ledger.create_order("c1", [bad])

    def test_create_order_rejects_taken_id(self, ledger) -> None:
        place(ledger)
        with pytest.raises(ConcurrencyConflict):
            place(ledger)

    def test_full_lifecycle(self, ledger) -> None:
        order = place(ledger)

        ledger.add_item(order.id, item("B", 1, "50"))
        ledger.change_status(order.id, "CONFIRMED")
        ledger.remove_item(order.id, "A")
        ledger.change_status(order.id, OrderStatus.SHIPPED)
        final = ledger.change_status(order.id, "delivered")

        assert final.status == OrderStatus.DELIVERED
        assert [i.product_id for i in final.items] == ["B"]
        assert final.total_amount == Decimal("50")
        assert len(ledger.get_events(order.id)) == 6

    def test_commands_on_missing_order(self, ledger) -> None:
        with pytest.raises(AggregateNotFound):
            ledger.change_status("ghost", "CONFIRMED")
        with pytest.raises(AggregateNotFound):
            ledger.add_item("ghost", item("A"))
        with pytest.raises(AggregateNotFound):
            ledger.rollback("ghost", to_version=1)

    def test_invalid_transition_appends_nothing(self, ledger) -> None:
        order = place(ledger)
        ledger.change_status(order.id, "CANCELLED")

        with pytest.raises(InvalidTransition):
            ledger.change_status(order.id, "CONFIRMED")

        assert len(ledger.get_events(order.id)) == 2

    def test_same_status_change_is_recorded(self, ledger) -> None:
        order = place(ledger)

        unchanged = ledger.change_status(order.id, "PENDING")

        assert unchanged.status == OrderStatus.PENDING
        assert ledger.event_store.current_version(order.id) == 2

    def test_unknown_status(self, ledger) -> None:
        order = place(ledger)
        with pytest.raises(InvalidAggregateState):
            ledger.change_status(order.id, "TELEPORTED")

    def test_non_string_status(self, ledger) -> None:
        order = place(ledger)
        with pytest.raises(InvalidAggregateState):
            ledger.change_status(order.id, 5)

    def test_negative_expected_version_is_rejected(self, ledger) -> None:
        order = place(ledger)

        with pytest.raises(InvalidAggregateState):
            ledger.change_status(order.id, "CONFIRMED", expected_version=-1)
        with pytest.raises(InvalidAggregateState):
            ledger.remove_item(order.id, "A", expected_version=-1)

        assert len(ledger.get_events(order.id)) == 1

    def test_add_item_rejects_malformed_item(self, ledger) -> None:
        order = place(ledger)
        with pytest.raises(InvalidItem):
            ledger.add_item(order.id, {"product_id": "B"})

    def test_item_changes_blocked_after_shipping(self, ledger) -> None:
        order = place(ledger)
        ledger.change_status(order.id, "CONFIRMED")
        ledger.change_status(order.id, "SHIPPED")

        with pytest.raises(InvalidAggregateState):
            ledger.add_item(order.id, item("B"))
        with pytest.raises(InvalidAggregateState):
            ledger.remove_item(order.id, "A")


class TestOptimisticConcurrency:
    def test_second_writer_on_same_version_conflicts(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))
        seen_by_both = ledger.event_store.current_version(order.id)
        assert seen_by_both == 2

        ledger.change_status(order.id, "CONFIRMED", expected_version=seen_by_both)
        with pytest.raises(ConcurrencyConflict) as exc_info:
            ledger.add_item(order.id, item("C"), expected_version=seen_by_both)

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3
        assert not ledger.get_order(order.id).has_item("C")

    def test_matching_expected_version_succeeds(self, ledger) -> None:
        order = place(ledger)
        updated = ledger.add_item(order.id, item("B"), expected_version=1)
        assert updated.has_item("B")

    def test_command_without_version_retries_on_conflict(self, clock) -> None:
        store = RacingStore(races=1)
        ledger = OrderLedger(store, clock, LedgerSettings(conflict_retries=3))
        order = place(ledger)

        updated = ledger.add_item(order.id, item("B"))

        assert updated.status == OrderStatus.CONFIRMED
        assert updated.has_item("B")
        assert [e.kind for e in store.read_all(order.id)] == [
            "OrderCreated",
            "OrderStatusChanged",
            "OrderItemAdded",
        ]

    def test_retries_are_bounded(self, clock) -> None:
        store = RacingStore(races=5)
        ledger = OrderLedger(store, clock, LedgerSettings(conflict_retries=2))
        order = place(ledger)

        with pytest.raises(ConcurrencyConflict):
            ledger.add_item(order.id, item("B"))

        assert not ledger.get_order(order.id).has_item("B")

    def test_explicit_version_is_never_retried(self, clock) -> None:
        store = RacingStore(races=1)
        ledger = OrderLedger(store, clock, LedgerSettings(conflict_retries=5))
        order = place(ledger)

        with pytest.raises(ConcurrencyConflict):
            ledger.add_item(order.id, item("B"), expected_version=1)


class TestRollback:
    def test_rollback_never_rewrites_history(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B", 1, "50"))
        ledger.change_status(order.id, "CONFIRMED")
        before = ledger.get_events(order.id)

        outcome = ledger.rollback(order.id, to_version=1)

        after = ledger.get_events(order.id)
        assert after[:-1] == before
        assert after[-1] == outcome.event
        assert after[-1].kind == "OrderRolledBack"
        assert ledger.get_order(order.id) == outcome.rolled_back_order
        assert outcome.rolled_back_order.total_amount == Decimal("100")
        assert outcome.original_order.total_amount == Decimal("150")

    def test_skipped_versions_block_future_rollbacks(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))
        ledger.change_status(order.id, "CONFIRMED")
        ledger.rollback(order.id, to_version=1)

        assert ledger.skipped_versions(order.id) == [2, 3]
        with pytest.raises(InvalidRollbackTarget):
            ledger.rollback(order.id, to_version=2)

    def test_nested_rollback(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))
        ledger.rollback(order.id, to_version=1)
        ledger.add_item(order.id, item("C"))

        outcome = ledger.rollback(order.id, to_version=3)

        assert [i.product_id for i in outcome.rolled_back_order.items] == ["A"]
        assert ledger.skipped_versions(order.id) == [2, 4]
        history = ledger.describe_rollbacks(order.id)
        assert [h.effective_version for h in history] == [1, 1]

    def test_timestamp_rollback(self, ledger, clock) -> None:
        order = place(ledger)
        created_at = clock.now()
        clock.advance(minutes=1)
        ledger.add_item(order.id, item("B"))
        clock.advance(minutes=1)

        outcome = ledger.rollback(order.id, to_timestamp=created_at)

        assert [i.product_id for i in outcome.rolled_back_order.items] == ["A"]
        assert outcome.events_undone == 1
        assert ledger.skipped_versions(order.id) == [2]

    def test_malformed_rollback_request(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))

        with pytest.raises(InvalidRollbackTarget):
            ledger.rollback(order.id, to_version="abc")
        with pytest.raises(InvalidRollbackTarget):
            ledger.rollback(order.id, to_version=1, expected_version=-1)

        assert len(ledger.get_events(order.id)) == 2

    def test_rollback_that_replays_clashing_events(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))
        ledger.rollback(order.id, to_version=1)
        ledger.add_item(order.id, item("B"))

        with pytest.raises(InvalidRollbackTarget, match="conflicting events"):
            ledger.rollback(order.id, to_version=4)

        assert len(ledger.get_events(order.id)) == 4

    def test_rollback_with_stale_version(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))

        with pytest.raises(ConcurrencyConflict):
            ledger.rollback(order.id, to_version=1, expected_version=1)

    def test_rollback_metrics(self, ledger) -> None:
        counter = rollbacks_recorded_total.labels(rollback_type="version")
        before = counter._value.get()
        order = place(ledger)
        ledger.add_item(order.id, item("B"))

        ledger.rollback(order.id, to_version=1)

        assert counter._value.get() == before + 1


class TestQueries:
    def test_get_missing_order(self, ledger) -> None:
        assert ledger.get_order("nope") is None
        assert ledger.get_events("nope") == []

    def test_get_order_at_version(self, ledger) -> None:
        order = place(ledger)
        ledger.add_item(order.id, item("B"))
        ledger.change_status(order.id, "CONFIRMED")

        assert ledger.get_order_at_version(order.id, 1).items == order.items
        assert ledger.get_order_at_version(order.id, 2).status == OrderStatus.PENDING

    def test_list_orders_paginates(self, ledger) -> None:
        for n in range(3):
            place(ledger, f"ord-{n}")

        first = ledger.list_orders(page=1, limit=2)
        second = ledger.list_orders(page=2, limit=2)

        assert [o.id for o in first.items] == ["ord-0", "ord-1"]
        assert first.total == 3
        assert first.total_pages == 2
        assert first.has_next and not first.has_prev
        assert [o.id for o in second.items] == ["ord-2"]
        assert not second.has_next

    def test_list_orders_skips_corrupt_logs(self, ledger, memory_store) -> None:
        place(ledger)
        memory_store.append(
            make_event(
                1,
                "OrderStatusChanged",
                {"order_id": "ord-broken", "old_status": "PENDING", "new_status": "CONFIRMED"},
                order_id="ord-broken",
            )
        )

        listing = ledger.list_orders()

        assert [o.id for o in listing.items] == ["ord-1"]

    def test_list_events_newest_first(self, ledger, clock) -> None:
        place(ledger, "ord-a")
        clock.advance(seconds=10)
        place(ledger, "ord-b")
        clock.advance(seconds=10)
        ledger.add_item("ord-a", item("B"))

        events = ledger.list_events(limit=2)

        assert [(e.aggregate_id, e.version) for e in events.items] == [("ord-a", 2), ("ord-b", 1)]
        assert events.total == 3

    def test_page_limit_is_clamped(self, ledger) -> None:
        place(ledger)
        assert ledger.list_orders(limit=1000).limit == 100
        assert ledger.list_orders(page=0).page == 1

    def test_stats_from_memory_store(self, ledger) -> None:
        order = place(ledger)
        ledger.change_status(order.id, "CONFIRMED")

        stats = ledger.stats()

        assert stats.backend == "memory"
        assert stats.total_events == 2
        assert stats.total_aggregates == 1
        assert stats.events_by_kind == {"OrderCreated": 1, "OrderStatusChanged": 1}

    def test_health(self, ledger, clock) -> None:
        health = ledger.health()

        assert health.status == "ok"
        assert health.backend == "memory"
        assert health.checked_at == clock.now()


class TestSQLiteLedger:
    def test_scenario_on_sqlite(self, sqlite_ledger) -> None:
        order = place(sqlite_ledger)
        sqlite_ledger.add_item(order.id, item("B", 1, "50"))
        sqlite_ledger.change_status(order.id, "CONFIRMED")
        sqlite_ledger.rollback(order.id, to_version=1)

        restored = sqlite_ledger.get_order(order.id)

        assert restored.status == OrderStatus.PENDING
        assert restored.total_amount == Decimal("100")
        assert sqlite_ledger.skipped_versions(order.id) == [2, 3]
        assert sqlite_ledger.stats().total_events == 4
        assert sqlite_ledger.health().store_healthy

    def test_ledger_from_settings(self, temp_db) -> None:
        ledger = OrderLedger(settings=LedgerSettings(store_type="sqlite", sqlite_path=temp_db))
        place(ledger)

        reopened = OrderLedger(settings=LedgerSettings(store_type="sqlite", sqlite_path=temp_db))
        assert reopened.get_order("ord-1") is not None
        assert reopened.backend == "sqlite"


def test_rejected_commands_are_counted(ledger) -> None:
    counter = commands_processed_total.labels(command_type="change_status", status="rejected")
    before = counter._value.get()
    order = place(ledger)
    ledger.change_status(order.id, "CANCELLED")

    with pytest.raises(InvalidTransition):
        ledger.change_status(order.id, "SHIPPED")

    assert counter._value.get() == before + 1
