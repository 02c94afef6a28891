"""
Structured logging for the order ledger.

Every ledger command runs inside a LogOperation, which binds a correlation id
and the order id to structlog's context variables. Store, replay and retry
log lines emitted while the command runs carry both without being passed
them explicitly.

Loggers are obtained per module and never configured at import time, so an
embedding application stays in charge of handlers and levels.
"""

import logging
import sys
import time
from typing import Any

import structlog

from order_ledger.kernel.errors import (
    AggregateNotFound,
    ConcurrencyConflict,
    InvalidRollbackTarget,
    InvariantViolation,
)
from order_ledger.kernel.ids import generate_id

# Failures the caller caused; logged without a traceback
CALLER_ERRORS = (
    AggregateNotFound,
    ConcurrencyConflict,
    InvalidRollbackTarget,
    InvariantViolation,
)

# Customer identity is personal data
REDACTED_FIELDS = frozenset({"customer_id"})

# Context keys a command shares with everything logged beneath it
BOUND_FIELDS = ("order_id",)


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        json_output: JSON lines (production) instead of console rendering
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper())

    # stderr keeps stdout clean for CLI output
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        renderer: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for the given module (typically __name__)."""
    return structlog.get_logger(name)


def current_correlation_id() -> str | None:
    """Correlation id of the command running in this context, if any."""
    return structlog.contextvars.get_contextvars().get("correlation_id")


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Example:
        >>> redact_context({"customer_id": "c1", "order_id": "ord-1"})
        {'customer_id': '***REDACTED***', 'order_id': 'ord-1'}
    """
    return {
        k: "***REDACTED***" if k in REDACTED_FIELDS else v
        for k, v in context.items()
    }


class LogOperation:
    """
    Times one ledger command and scopes its log context.

    On entry a fresh correlation id is bound unless an enclosing operation
    already bound one, so a command and everything it triggers share an id.
    The bindings are reset on exit.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.correlation_id = ""
        self.start_time: float = 0.0
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogOperation":
        self.correlation_id = current_correlation_id() or generate_id()
        bindings = {
            key: self.context[key]
            for key in BOUND_FIELDS
            if self.context.get(key) is not None
        }
        self._tokens = structlog.contextvars.bind_contextvars(
            correlation_id=self.correlation_id, **bindings
        )
        self.start_time = time.perf_counter()
        self.logger.debug(
            f"{self.operation} started",
            operation=self.operation,
            **redact_context(self.context),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        fields = {
            "operation": self.operation,
            "duration_ms": duration_ms,
            **redact_context(self.context),
        }
        try:
            if exc_type is None:
                self.logger.info(f"{self.operation} completed", **fields)
            elif issubclass(exc_type, CALLER_ERRORS):
                self.logger.info(
                    f"{self.operation} rejected",
                    error_type=exc_type.__name__,
                    error=str(exc_val),
                    **fields,
                )
            else:
                self.logger.error(
                    f"{self.operation} failed",
                    error_type=exc_type.__name__,
                    exc_info=(exc_type, exc_val, exc_tb),
                    **fields,
                )
        finally:
            structlog.contextvars.reset_contextvars(**self._tokens)
