"""
Prometheus metrics for the order ledger.

Counters and histograms are module-level singletons registered in the
default prometheus_client registry.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Histogram, start_http_server

from order_ledger.kernel.errors import (
    ConcurrencyConflict,
    InvalidRollbackTarget,
    InvariantViolation,
)

# ============================================================================
# Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "order_ledger_events_appended_total",
    "Total number of events appended to the event log",
    ["store", "kind"],
)

events_loaded_total = Counter(
    "order_ledger_events_loaded_total",
    "Total number of events read from the event log",
    ["store"],
)

version_conflicts_total = Counter(
    "order_ledger_version_conflicts_total",
    "Total number of optimistic concurrency conflicts",
    ["store"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "order_ledger_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

commands_processed_total = Counter(
    "order_ledger_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, rejected, conflict, failure
)

# ============================================================================
# Reconstruction Metrics
# ============================================================================

replay_duration_seconds = Histogram(
    "order_ledger_replay_duration_seconds",
    "Duration of order reconstruction from events",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

replayed_events_total = Counter(
    "order_ledger_replayed_events_total",
    "Total number of events applied during reconstruction",
)

unknown_events_skipped_total = Counter(
    "order_ledger_unknown_events_skipped_total",
    "Events skipped during replay because their kind is not recognized",
    ["kind"],
)

rollbacks_recorded_total = Counter(
    "order_ledger_rollbacks_recorded_total",
    "Total number of rollback events appended",
    ["rollback_type"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track command processing duration and outcome.

    Business-rule rejections are counted separately from unexpected failures
    so dashboards can tell user errors from faults.
    """
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except ConcurrencyConflict:
                status = "conflict"
                raise
            except (InvariantViolation, InvalidRollbackTarget):
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                command_duration_seconds.labels(command_type=command_type).observe(duration)
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """Start the Prometheus metrics HTTP endpoint on the given port."""
    start_http_server(port)
