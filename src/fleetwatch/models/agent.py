"""Agent ORM model."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetwatch.constants import (
    DEFAULT_AGENT_TYPE,
    DEFAULT_TOKENS_AVAILABLE,
    AgentStatus,
)
from fleetwatch.models.base import Base
from fleetwatch.timeutil import as_utc


class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[str] = mapped_column(String(50), default=DEFAULT_AGENT_TYPE)
    status: Mapped[str] = mapped_column(
        String(16), default=AgentStatus.IDLE, index=True
    )
    tokens_available: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_TOKENS_AVAILABLE
    )
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    last_heartbeat: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        index=True,
    )
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    # status and current_status_since always change together
    current_status_since: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    # [{status, entered_at, duration_ms, reason}], oldest first
    status_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, default=list
    )
    health: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "tokens_available": self.tokens_available,
            "tokens_used": self.tokens_used,
            "last_heartbeat": as_utc(self.last_heartbeat).isoformat(),
            "last_active": as_utc(self.last_active).isoformat(),
            "current_status_since": as_utc(
                self.current_status_since
            ).isoformat(),
            "status_history": list(self.status_history or []),
            "health": self.health,
            "config": self.config,
            "metadata": self.meta,
        }
