"""
Order Ledger CLI

Command-line interface for operating an order ledger stored in SQLite.

Usage:
    order-ledger init --db orders.db
    order-ledger order create --customer c1 --items '[{"product_id": "A", ...}]'
    order-ledger order status --id <order_id> --status CONFIRMED
    order-ledger order rollback --id <order_id> --to-version 2
    order-ledger order skipped --id <order_id>
    order-ledger stats
    order-ledger serve --port 8080
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from order_ledger.health_server import initialize_health_server, run_health_server
from order_ledger.kernel.config import LedgerSettings
from order_ledger.kernel.errors import ConfigurationError, LedgerError
from order_ledger.kernel.event_store import SQLiteEventStore
from order_ledger.kernel.logging import configure_logging
from order_ledger.kernel.metrics import start_metrics_server
from order_ledger.ledger import OrderLedger
from order_ledger.orders.models import Order

app = typer.Typer(
    name="order-ledger",
    help="Order Ledger - event-sourced orders with rollback",
    add_completion=False,
)

order_app = typer.Typer(help="Order commands")
app.add_typer(order_app, name="order")

DEFAULT_DB = Path(".orders.db")


@app.callback()
def main() -> None:
    """Configure logging from ORDER_LEDGER_* environment variables"""
    try:
        settings = LedgerSettings.from_env()
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    # stderr keeps stdout clean for JSON output
    configure_logging(json_output=settings.json_logs, log_level=settings.log_level)


def get_ledger(db_path: Optional[Path] = None) -> OrderLedger:
    """Open the ledger stored at db_path"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'order-ledger init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    settings = LedgerSettings.from_env().model_copy(
        update={"store_type": "sqlite", "sqlite_path": db}
    )
    return OrderLedger(SQLiteEventStore(db), settings=settings)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn ledger errors into a one-line message and exit status 1"""
    try:
        yield
    except LedgerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def echo_order(order: Order) -> None:
    typer.echo(f"\nOrder: {order.id}")
    typer.echo(f"  Customer: {order.customer_id}")
    typer.echo(f"  Status: {order.status.value}")
    typer.echo(f"  Total: {order.total_amount}")
    typer.echo("  Items:")
    for item in order.items:
        typer.echo(
            f"    - {item.product_id} {item.product_name}: "
            f"{item.quantity} x {item.price} = {item.line_total}"
        )


DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]
OrderIdOption = Annotated[str, typer.Option("--id", help="Order ID")]
ExpectedVersionOption = Annotated[
    Optional[int],
    typer.Option(
        "--expected-version",
        help="Fail instead of retrying if the order moved past this version",
    ),
]


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new order database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    SQLiteEventStore(db)
    typer.echo(f"✓ Initialized order database: {db}")


# Order commands


@order_app.command("create")
def order_create(
    customer: Annotated[str, typer.Option("--customer", help="Customer ID")],
    items: Annotated[
        str,
        typer.Option(
            "--items",
            help='Items as JSON: [{"product_id", "product_name", "quantity", "price"}]',
        ),
    ],
    order_id: Annotated[
        Optional[str], typer.Option("--order-id", help="Use this order ID")
    ] = None,
    db: DbOption = None,
) -> None:
    """Create a new order"""
    ledger = get_ledger(db)

    try:
        items_list = json.loads(items)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --items is not valid JSON: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(items_list, list):
        typer.echo("Error: --items must be a JSON list", err=True)
        raise typer.Exit(1)

    with reported_errors():
        order = ledger.create_order(customer, items_list, order_id=order_id)

    typer.echo(f"✓ Created order: {order.id}")
    typer.echo(f"  Items: {len(order.items)}")
    typer.echo(f"  Total: {order.total_amount}")


@order_app.command("show")
def order_show(
    order_id: OrderIdOption,
    at_version: Annotated[
        Optional[int],
        typer.Option("--at-version", help="Show the order as of this version"),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show an order"""
    ledger = get_ledger(db)

    with reported_errors():
        if at_version is None:
            order = ledger.get_order(order_id)
        else:
            order = ledger.get_order_at_version(order_id, at_version)

    if order is None:
        typer.echo(f"Error: Order not found: {order_id}", err=True)
        raise typer.Exit(1)

    if json_output:
        echo_json(order.model_dump(mode="json"))
        return

    echo_order(order)


@order_app.command("list")
def order_list(
    page: Annotated[int, typer.Option("--page", min=1)] = 1,
    limit: Annotated[int, typer.Option("--limit", min=1, max=100)] = 10,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List orders"""
    ledger = get_ledger(db)

    result = ledger.list_orders(page=page, limit=limit)

    if json_output:
        echo_json(result.model_dump(mode="json"))
        return

    if not result.items:
        typer.echo("No orders found")
        return

    typer.echo(f"\nOrders (page {result.page}/{result.total_pages}, {result.total} total):")
    for order in result.items:
        summary = order.summary()
        typer.echo(
            f"  {summary['id']}  {summary['status']:<10} "
            f"items={summary['item_count']} total={summary['total_amount']}"
        )


@order_app.command("status")
def order_status(
    order_id: OrderIdOption,
    status: Annotated[str, typer.Option("--status", help="New status")],
    expected_version: ExpectedVersionOption = None,
    db: DbOption = None,
) -> None:
    """Change an order's status"""
    ledger = get_ledger(db)

    with reported_errors():
        order = ledger.change_status(order_id, status, expected_version=expected_version)

    typer.echo(f"✓ Order {order.id} is now {order.status.value}")


@order_app.command("add-item")
def order_add_item(
    order_id: OrderIdOption,
    product_id: Annotated[str, typer.Option("--product-id")],
    name: Annotated[str, typer.Option("--name", help="Product name")],
    quantity: Annotated[int, typer.Option("--quantity")],
    price: Annotated[str, typer.Option("--price", help="Unit price (decimal)")],
    expected_version: ExpectedVersionOption = None,
    db: DbOption = None,
) -> None:
    """Add a product line to an order"""
    ledger = get_ledger(db)

    with reported_errors():
        order = ledger.add_item(
            order_id,
            {
                "product_id": product_id,
                "product_name": name,
                "quantity": quantity,
                "price": price,
            },
            expected_version=expected_version,
        )

    typer.echo(f"✓ Added {product_id} to order {order.id}")
    typer.echo(f"  Total: {order.total_amount}")


@order_app.command("remove-item")
def order_remove_item(
    order_id: OrderIdOption,
    product_id: Annotated[str, typer.Option("--product-id")],
    expected_version: ExpectedVersionOption = None,
    db: DbOption = None,
) -> None:
    """Remove a product line from an order"""
    ledger = get_ledger(db)

    with reported_errors():
        order = ledger.remove_item(order_id, product_id, expected_version=expected_version)

    typer.echo(f"✓ Removed {product_id} from order {order.id}")
    typer.echo(f"  Total: {order.total_amount}")


@order_app.command("rollback")
def order_rollback(
    order_id: OrderIdOption,
    to_version: Annotated[
        Optional[int], typer.Option("--to-version", help="Version to restore")
    ] = None,
    to_timestamp: Annotated[
        Optional[str],
        typer.Option("--to-timestamp", help="ISO-8601 instant to restore"),
    ] = None,
    expected_version: ExpectedVersionOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Roll an order back to an earlier version or instant"""
    ledger = get_ledger(db)

    with reported_errors():
        outcome = ledger.rollback(
            order_id,
            to_version=to_version,
            to_timestamp=to_timestamp,
            expected_version=expected_version,
        )

    if json_output:
        echo_json(outcome.model_dump(mode="json"))
        return

    typer.echo(f"✓ Rolled back order {order_id}: {outcome.event.payload['rollback_point']}")
    typer.echo(f"  Rollback recorded as version {outcome.event.version}")
    typer.echo(f"  Events undone: {outcome.events_undone}")
    typer.echo(
        f"  Status: {outcome.original_order.status.value} → "
        f"{outcome.rolled_back_order.status.value}"
    )
    typer.echo(
        f"  Total: {outcome.original_order.total_amount} → "
        f"{outcome.rolled_back_order.total_amount}"
    )


@order_app.command("events")
def order_events(
    order_id: Annotated[
        Optional[str],
        typer.Option("--id", help="Order ID (omit for all orders, newest first)"),
    ] = None,
    page: Annotated[int, typer.Option("--page", min=1)] = 1,
    limit: Annotated[int, typer.Option("--limit", min=1, max=100)] = 20,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show raw events"""
    ledger = get_ledger(db)

    if order_id is not None:
        events = ledger.get_events(order_id)
        if not events:
            typer.echo(f"Error: Order not found: {order_id}", err=True)
            raise typer.Exit(1)
    else:
        events = ledger.list_events(page=page, limit=limit).items

    if json_output:
        echo_json([event.to_wire() for event in events])
        return

    for event in events:
        typer.echo(
            f"  v{event.version:<3} {event.timestamp.isoformat()}  "
            f"{event.kind:<20} {event.aggregate_id}"
        )


@order_app.command("skipped")
def order_skipped(
    order_id: OrderIdOption,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show versions that can no longer be rollback targets"""
    ledger = get_ledger(db)

    with reported_errors():
        skipped = ledger.skipped_versions(order_id)

    if json_output:
        echo_json({"order_id": order_id, "skipped_versions": skipped, "count": len(skipped)})
        return

    if not skipped:
        typer.echo(f"No skipped versions for order {order_id}")
        return
    typer.echo(f"Skipped versions: {', '.join(str(v) for v in skipped)}")


@order_app.command("history")
def order_history(
    order_id: OrderIdOption,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show every rollback of an order"""
    ledger = get_ledger(db)

    with reported_errors():
        rollbacks = ledger.describe_rollbacks(order_id)

    if json_output:
        echo_json([rollback.model_dump(mode="json") for rollback in rollbacks])
        return

    if not rollbacks:
        typer.echo(f"No rollbacks recorded for order {order_id}")
        return

    for rollback in rollbacks:
        target = f"{rollback.rollback_type.value} {rollback.rollback_value}"
        if rollback.effective_version is not None and rollback.effective_version != rollback.rollback_value:
            target += f" (resolves to {rollback.effective_version})"
        typer.echo(
            f"  v{rollback.version}: rolled back to {target}, "
            f"undid {rollback.events_undone} event(s), "
            f"skipped {rollback.skipped_versions or 'none'}"
        )


# System commands


@app.command()
def stats(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show event store statistics"""
    ledger = get_ledger(db)

    store_stats = ledger.stats()

    if json_output:
        echo_json(store_stats.model_dump())
        return

    typer.echo(f"\nEvent store ({store_stats.backend}):")
    typer.echo(f"  Total events: {store_stats.total_events}")
    typer.echo(f"  Total orders: {store_stats.total_aggregates}")
    if store_stats.events_by_kind:
        typer.echo("  Events by kind:")
        for kind, count in store_stats.events_by_kind.items():
            typer.echo(f"    {kind}: {count}")


@app.command()
def serve(
    port: Annotated[int, typer.Option("--port", help="Health server port")] = 8080,
    db: DbOption = None,
) -> None:
    """Serve health probes, plus Prometheus metrics when ORDER_LEDGER_METRICS_PORT is set"""
    ledger = get_ledger(db)

    metrics_port = ledger.settings.metrics_port
    if metrics_port is not None:
        start_metrics_server(metrics_port)
        typer.echo(f"✓ Metrics on :{metrics_port}/metrics")

    initialize_health_server(ledger)
    typer.echo(f"✓ Health checks on :{port}/health")
    run_health_server(port=port)


if __name__ == "__main__":
    app()
