"""
Tests for health server

Tests Flask-based health check endpoints for liveness and readiness probes,
security headers, and event store diagnostics.
"""

import sqlite3

import pytest

from order_ledger import health_server
from order_ledger.health_server import add_security_headers, app, initialize_health_server
from tests.helpers import item


@pytest.fixture(autouse=True)
def reset_ledger():
    """Each test starts with no ledger attached"""
    health_server._ledger = None
    yield
    health_server._ledger = None


@pytest.fixture
def client():
    """Flask test client"""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def initialized_server(sqlite_ledger):
    """Health server attached to a SQLite-backed ledger holding one order"""
    sqlite_ledger.create_order("c1", [item("A")], order_id="ord-1")
    sqlite_ledger.change_status("ord-1", "CONFIRMED")
    initialize_health_server(sqlite_ledger)
    return sqlite_ledger


# =============================================================================
# Initialization
# =============================================================================


def test_initialize_health_server_sets_ledger(ledger):
    initialize_health_server(ledger)
    assert health_server._ledger is ledger


def test_security_headers_hook_is_registered():
    assert add_security_headers in app.after_request_funcs[None]


# =============================================================================
# Security Headers
# =============================================================================


@pytest.mark.parametrize("path", ["/health/live", "/health/ready", "/health"])
def test_endpoints_have_security_headers(client, initialized_server, path):
    response = client.get(path)

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Cache-Control"] == "no-store"
    assert "default-src 'none'" in response.headers["Content-Security-Policy"]


# =============================================================================
# Liveness
# =============================================================================


def test_liveness_returns_200_ok(client, initialized_server):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.get_json() == {"status": "alive", "service": "order-ledger"}


def test_liveness_works_without_initialization(client):
    assert client.get("/health/live").status_code == 200


# =============================================================================
# Readiness
# =============================================================================


def test_readiness_returns_200_when_ready(client, initialized_server):
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ready", "backend": "sqlite"}


def test_readiness_with_memory_store(client, ledger):
    initialize_health_server(ledger)

    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.get_json()["backend"] == "memory"


def test_readiness_returns_503_when_not_initialized(client):
    response = client.get("/health/ready")

    assert response.status_code == 503
    data = response.get_json()
    assert data["status"] == "not_ready"
    assert data["reason"] == "ledger_not_initialized"


def test_readiness_returns_503_when_store_unhealthy(client, initialized_server, monkeypatch):
    monkeypatch.setattr(initialized_server.event_store, "health_check", lambda: False)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "event_store_unhealthy"


# =============================================================================
# Detailed Health
# =============================================================================


def test_detailed_health_returns_200_when_healthy(client, initialized_server):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "healthy"
    assert data["service"] == "order-ledger"
    assert data["version"] == "0.1.0"


def test_detailed_health_includes_store_counts(client, initialized_server):
    data = client.get("/health").get_json()

    store = data["event_store"]
    assert store["status"] == "healthy"
    assert store["backend"] == "sqlite"
    assert store["total_events"] == 2
    assert store["total_orders"] == 1
    assert store["events_by_kind"] == {"OrderCreated": 1, "OrderStatusChanged": 1}


def test_detailed_health_degraded_when_not_initialized(client):
    response = client.get("/health")

    assert response.status_code == 503
    data = response.get_json()
    assert data["status"] == "degraded"
    assert data["event_store"]["status"] == "not_initialized"


def test_detailed_health_degraded_on_database_error(client, initialized_server, monkeypatch):
    def broken_stats():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(initialized_server.event_store, "stats", broken_stats)

    response = client.get("/health")

    assert response.status_code == 503
    data = response.get_json()
    assert data["status"] == "degraded"
    assert data["event_store"]["status"] == "unhealthy"
    assert "disk I/O error" in data["event_store"]["error"]


def test_detailed_health_degraded_when_store_unhealthy(client, initialized_server, monkeypatch):
    monkeypatch.setattr(initialized_server.event_store, "health_check", lambda: False)

    response = client.get("/health")

    assert response.status_code == 503
    assert response.get_json()["event_store"]["status"] == "unhealthy"
