"""Protocol-based repository interfaces.

SQL implementations satisfy these protocols structurally (no inheritance).
Test doubles can be plain classes or mocks matching the same signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from fleetwatch.models.activity import Activity
from fleetwatch.models.agent import Agent
from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.models.ticket import Ticket


@dataclass(frozen=True)
class ActivityFilter:
    """Optional equality/window filters for activity scans."""

    agent_id: str | None = None
    ticket_id: str | None = None
    activity_type: str | None = None
    trace_id: str | None = None
    model_name: str | None = None
    start: datetime | None = None
    end: datetime | None = None


class ActivityRepository(Protocol):
    async def add(self, activity: Activity) -> Activity: ...
    async def get(self, activity_id: str) -> Activity | None: ...
    async def save(self, activity: Activity) -> Activity: ...
    async def delete(self, activity_id: str) -> bool: ...
    async def find(
        self,
        filters: ActivityFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Activity]: ...
    async def count(self, filters: ActivityFilter) -> int: ...
    async def children(self, parent_id: str) -> list[Activity]: ...


class AgentRepository(Protocol):
    async def get(self, agent_id: str) -> Agent | None: ...
    async def add(self, agent: Agent) -> Agent: ...
    async def save(self, agent: Agent) -> Agent: ...
    async def list_all(self) -> list[Agent]: ...
    async def find_stale(self, cutoff: datetime) -> list[Agent]: ...


class TicketRepository(Protocol):
    async def get(self, ticket_id: str) -> Ticket | None: ...
    async def add(self, ticket: Ticket) -> Ticket: ...
    async def save(self, ticket: Ticket) -> Ticket: ...
    async def increment_tokens(
        self, ticket_id: str, input_tokens: int, output_tokens: int
    ) -> bool: ...


class HeartbeatRepository(Protocol):
    async def add(self, heartbeat: Heartbeat) -> Heartbeat: ...
    async def since(self, cutoff: datetime) -> list[Heartbeat]: ...
    async def delete_before(self, cutoff: datetime) -> int: ...


class AgentHistoryRepository(Protocol):
    async def add(self, entry: AgentHistory) -> AgentHistory: ...
    async def list_for_agent(
        self, agent_id: str, limit: int = 20
    ) -> list[AgentHistory]: ...
