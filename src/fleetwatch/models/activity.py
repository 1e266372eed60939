"""Activity ORM model: one recorded unit of agent work."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetwatch.models.base import Base
from fleetwatch.timeutil import as_utc


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    agent_id: Mapped[str] = mapped_column(String(100))
    activity_type: Mapped[str] = mapped_column(String(64))
    description: Mapped[str] = mapped_column(Text, default="")

    # Content
    input_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    output: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_parts: Mapped[dict[str, Any]] = mapped_column(
        JSON, default=dict
    )

    # Tokens
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cache_hits: Mapped[int] = mapped_column(Integer, default=0)

    # Tool / API details
    tool_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tool_input: Mapped[Any] = mapped_column(JSON, nullable=True)
    tool_output: Mapped[Any] = mapped_column(JSON, nullable=True)
    api_endpoint: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    api_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    api_status_code: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)

    # Context
    ticket_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_activity_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    trace_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    session_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    request_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    # Cost
    model_name: Mapped[str | None] = mapped_column(
        String(200), nullable=True
    )
    cost_input: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_output: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_total: Mapped[float | None] = mapped_column(Float, nullable=True)

    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_activities_agent_id", "agent_id"),
        Index("ix_activities_ticket_id", "ticket_id"),
        Index("ix_activities_trace_id", "trace_id"),
        Index("ix_activities_created_at", "created_at"),
    )

    @property
    def cost(self) -> float:
        """Total cost, zero when no model was priced."""
        return self.cost_total or 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "activity_type": self.activity_type,
            "description": self.description,
            "input_prompt": self.input_prompt,
            "output": self.output,
            "content_parts": self.content_parts,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cache_hits": self.cache_hits,
            "tool_name": self.tool_name,
            "tool_input": self.tool_input,
            "tool_output": self.tool_output,
            "api_endpoint": self.api_endpoint,
            "api_method": self.api_method,
            "api_status_code": self.api_status_code,
            "duration_ms": self.duration_ms,
            "ticket_id": self.ticket_id,
            "parent_activity_id": self.parent_activity_id,
            "trace_id": self.trace_id,
            "session_id": self.session_id,
            "request_id": self.request_id,
            "model_name": self.model_name,
            "cost_input": self.cost_input,
            "cost_output": self.cost_output,
            "cost_total": self.cost_total,
            "metadata": self.meta,
            "created_at": as_utc(self.created_at).isoformat(),
        }
