"""Request/response schemas for the HTTP API."""

from typing import Any

from pydantic import BaseModel, Field

from fleetwatch.constants import DEFAULT_AGENT_TYPE


class APIResponse(BaseModel):
    """Standard response envelope for all API endpoints."""

    success: bool
    data: Any | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HeartbeatBody(BaseModel):
    """Request body for POST /api/agents/{agent_id}/heartbeat."""

    status: str | None = None
    name: str | None = Field(default=None, max_length=200)
    type: str | None = Field(default=None, max_length=50)
    tokens_used: int | None = Field(default=None, ge=0)
    tokens_available: int | None = Field(default=None, ge=0)
    health: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AgentRegistration(BaseModel):
    """Request body for POST /api/agents. Re-posting an id updates it."""

    id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    type: str = Field(default=DEFAULT_AGENT_TYPE, min_length=1, max_length=50)
    tokens_available: int | None = Field(default=None, ge=0)
    config: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TicketCreate(BaseModel):
    """Request body for POST /api/tickets."""

    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    priority: str = Field(default="medium", pattern="^(low|medium|high|urgent)$")
    assignee_id: str | None = None


class TicketUpdate(BaseModel):
    """Request body for PUT /api/tickets/{ticket_id}."""

    status: str = Field(min_length=1)
    assignee_id: str | None = None
