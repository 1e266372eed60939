"""Environment-based configuration and engine factory."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from fleetwatch.constants import (
    BUDGET_ALERT_RATIO,
    DEFAULT_DAILY_BUDGET,
    DEFAULT_TOKENIZER_MODEL,
    HEARTBEAT_INTERVAL_SECONDS,
    HEARTBEAT_RETENTION_HOURS,
    MIN_ANOMALY_COST,
    OFFLINE_THRESHOLD_SECONDS,
    SPIKE_STDDEV_THRESHOLD,
    STATUS_HISTORY_LIMIT,
    TRACE_CHAIN_MAX_TRACES,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables."""

    # Database
    database_url: str = "sqlite:///data/fleetwatch.db"

    # Logging
    log_level: str = "INFO"
    debug_mode: bool = False

    # API
    api_key: str = ""
    cors_origins: str = "http://localhost:3000"
    log_api_requests: bool = True

    # Heartbeats and status
    heartbeat_interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS
    offline_threshold_seconds: float = OFFLINE_THRESHOLD_SECONDS
    heartbeat_retention_hours: int = HEARTBEAT_RETENTION_HOURS
    status_history_limit: int = STATUS_HISTORY_LIMIT
    serialize_agent_updates: bool = False

    # Activity ledger
    trace_chain_max_traces: int = TRACE_CHAIN_MAX_TRACES
    tokenizer_model: str = DEFAULT_TOKENIZER_MODEL
    exact_token_counting: bool = True

    # Budget and anomaly detection
    daily_budget: float = DEFAULT_DAILY_BUDGET
    anomaly_spike_threshold: float = SPIKE_STDDEV_THRESHOLD
    anomaly_min_cost: float = MIN_ANOMALY_COST
    anomaly_budget_ratio: float = BUDGET_ALERT_RATIO

    # Ticket workflow
    strict_ticket_workflow: bool = False

    # Observability
    trace_enabled: bool = True

    @field_validator(
        "heartbeat_interval_seconds",
        "offline_threshold_seconds",
        "daily_budget",
        "anomaly_spike_threshold",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("status_history_limit", "trace_chain_max_traces")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def _warn_short_threshold(self) -> Settings:
        if (
            self.offline_threshold_seconds
            < self.heartbeat_interval_seconds
        ):
            logger.warning(
                "event=short_offline_threshold"
                " threshold_s=%s interval_s=%s",
                self.offline_threshold_seconds,
                self.heartbeat_interval_seconds,
            )
        return self

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "FLEETWATCH_",
        "extra": "ignore",
    }


def create_app_engine(
    url: str, *, echo: bool = False
) -> AsyncEngine:
    """Create async SQLite engine with WAL journal mode.

    Handles URL conversion (sqlite:/// → sqlite+aiosqlite:///)
    and sets WAL mode via a pool-connect event listener so it
    fires once per raw DBAPI connection, not per ORM session.
    """
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        db_url = "sqlite+aiosqlite:///" + path
    else:
        db_url = url
    engine = create_async_engine(db_url, echo=echo)

    if db_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def _set_wal_mode(
            dbapi_conn: object,
            _connection_record: object,
        ) -> None:
            cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")  # pyright: ignore[reportUnknownMemberType]
            cursor.close()  # pyright: ignore[reportUnknownMemberType]

    return engine
