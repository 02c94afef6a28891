"""
Retry logic with exponential backoff for transient failures.

Two kinds of failure are worth retrying: SQLite lock contention inside the
store, and optimistic concurrency conflicts when the façade issued a command
without an explicit expected version (re-reading and re-deciding is safe
because every command is re-validated against the fresh log).
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from order_ledger.kernel.errors import ConcurrencyConflict
from order_ledger.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 50,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    SQLite uses file-based locking and reports "database is locked" when a
    BEGIN IMMEDIATE cannot obtain the write lock within the busy timeout.
    Waits start at min_wait_ms and double per attempt up to max_wait_ms.

    Example:
        @retry_on_sqlite_lock()
        def append(...):
            conn.execute("BEGIN IMMEDIATE")
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=min_wait_ms / 1000.0,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )


def retry_on_conflict(
    max_attempts: int = 3,
    min_wait_ms: int = 5,
    max_wait_ms: int = 200,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for ConcurrencyConflict raised by read-then-write commands.

    The decorated callable must re-read the log on every attempt. After the
    last attempt the conflict propagates to the caller unchanged.

    Waits start at min_wait_ms and double per attempt up to max_wait_ms.
    """
    return retry(
        retry=retry_if_exception_type(ConcurrencyConflict),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(
            multiplier=min_wait_ms / 1000.0,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.info(
            "Concurrent write detected, re-reading order log",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )
