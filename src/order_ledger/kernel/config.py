"""
Ledger settings - how the process wires its collaborators

Settings pick the event store backend and tune logging, retries, and the
metrics endpoint. They can be built directly or read from the environment.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from order_ledger.kernel.errors import ConfigurationError

ENV_PREFIX = "ORDER_LEDGER_"


class LedgerSettings(BaseModel):
    """
    Runtime configuration for an OrderLedger

    The defaults describe a development setup: in-memory store, console logs.
    """

    store_type: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Event store backend",
    )

    sqlite_path: Path = Field(
        default=Path("orders.db"),
        description="SQLite database file (sqlite backend only)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
    )

    json_logs: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output",
    )

    conflict_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts for commands issued without an expected version",
    )

    metrics_port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Expose Prometheus metrics on this port when set",
    )

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "LedgerSettings":
        """
        Build settings from ORDER_LEDGER_* environment variables

        Recognized: ORDER_LEDGER_STORE, ORDER_LEDGER_DB, ORDER_LEDGER_LOG_LEVEL,
        ORDER_LEDGER_CONFLICT_RETRIES, ORDER_LEDGER_METRICS_PORT. ENVIRONMENT=production
        switches to JSON logs.

        Raises:
            ConfigurationError: If a variable holds an unusable value
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        if store := env.get(f"{ENV_PREFIX}STORE"):
            values["store_type"] = store.lower()
        if db := env.get(f"{ENV_PREFIX}DB"):
            values["sqlite_path"] = Path(db)
        if level := env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            values["log_level"] = level.upper()
        if retries := env.get(f"{ENV_PREFIX}CONFLICT_RETRIES"):
            values["conflict_retries"] = retries
        if port := env.get(f"{ENV_PREFIX}METRICS_PORT"):
            values["metrics_port"] = port
        values["json_logs"] = env.get("ENVIRONMENT", "development").lower() == "production"

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid ledger settings from environment: {e}") from e
