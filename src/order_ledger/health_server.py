"""
Health check HTTP server for liveness and readiness probes.

Exposes the ledger's view of its event store over HTTP so orchestrators and
operators can tell whether the process can serve reads and writes.
"""

import sqlite3
from typing import Any

from flask import Flask, Response, jsonify

from order_ledger import __version__
from order_ledger.kernel.errors import LedgerError
from order_ledger.kernel.logging import get_logger
from order_ledger.ledger import OrderLedger

logger = get_logger(__name__)

app = Flask(__name__)

SERVICE_NAME = "order-ledger"

# Global state - set by initialize_health_server()
_ledger: OrderLedger | None = None


def initialize_health_server(ledger: OrderLedger) -> None:
    """
    Attach the ledger the endpoints report on.

    Args:
        ledger: Ledger whose event store is probed
    """
    global _ledger
    _ledger = ledger
    logger.info("Health server initialized", backend=ledger.backend)


@app.after_request
def add_security_headers(response: Response) -> Response:
    """Harden every response; probes are never meant to be cached or framed."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Cache-Control"] = "no-store"
    response.headers["Content-Security-Policy"] = "default-src 'none'"
    return response


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Response, int]:
    """
    Liveness probe - the process is running.

    Returns:
        JSON response with status and 200 OK
    """
    return jsonify({"status": "alive", "service": SERVICE_NAME}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Response, int]:
    """
    Readiness probe - the event store answers queries.

    Returns:
        JSON response with status and 200 OK if ready, 503 if not ready
    """
    if _ledger is None:
        logger.error("Readiness check failed: ledger not initialized")
        return jsonify({"status": "not_ready", "reason": "ledger_not_initialized"}), 503

    try:
        health = _ledger.health()
    except (LedgerError, sqlite3.Error) as e:
        logger.error("Readiness check failed", error=str(e))
        return (
            jsonify({"status": "not_ready", "reason": "event_store_error", "error": str(e)}),
            503,
        )

    if not health.store_healthy:
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "event_store_unhealthy",
                    "backend": health.backend,
                }
            ),
            503,
        )

    logger.debug("Readiness check passed", backend=health.backend)
    return jsonify({"status": "ready", "backend": health.backend}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Response, int]:
    """
    Detailed health - store status plus event and order counts.

    Returns:
        JSON response, 200 when healthy and 503 when degraded
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
    }

    if _ledger is None:
        health_data["event_store"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"
        return jsonify(health_data), 503

    try:
        health = _ledger.health()
        stats = _ledger.stats()
        health_data["event_store"] = {
            "status": "healthy" if health.store_healthy else "unhealthy",
            "backend": stats.backend,
            "total_events": stats.total_events,
            "total_orders": stats.total_aggregates,
            "events_by_kind": stats.events_by_kind,
        }
        if not health.store_healthy:
            health_data["status"] = "degraded"
    except (LedgerError, sqlite3.Error) as e:
        logger.error("Event store health check failed", error=str(e))
        health_data["event_store"] = {"status": "unhealthy", "error": str(e)}
        health_data["status"] = "degraded"

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)
