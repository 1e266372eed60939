"""In-memory fake repositories for testing.

Dict-backed implementations of all repository protocols.
No SQLAlchemy sessions, no I/O: instant operations for unit tests.
"""

# pyright: reportUnusedFunction=false

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fleetwatch.constants import AgentStatus
from fleetwatch.models.activity import Activity
from fleetwatch.models.agent import Agent
from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.models.ticket import Ticket
from fleetwatch.repositories.protocols import ActivityFilter
from fleetwatch.timeutil import as_utc


def _matches(activity: Activity, filters: ActivityFilter) -> bool:
    if filters.agent_id is not None and activity.agent_id != filters.agent_id:
        return False
    if (
        filters.ticket_id is not None
        and activity.ticket_id != filters.ticket_id
    ):
        return False
    if (
        filters.activity_type is not None
        and activity.activity_type != filters.activity_type
    ):
        return False
    if filters.trace_id is not None and activity.trace_id != filters.trace_id:
        return False
    if (
        filters.model_name is not None
        and activity.model_name != filters.model_name
    ):
        return False
    created = as_utc(activity.created_at)
    if filters.start is not None and created < as_utc(filters.start):
        return False
    if filters.end is not None and created > as_utc(filters.end):
        return False
    return True


class FakeActivityRepository:
    """Dict-backed ActivityRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, Activity] = {}

    async def add(self, activity: Activity) -> Activity:
        if not activity.id:
            activity.id = str(uuid.uuid4())
        if activity.created_at is None:
            activity.created_at = datetime.now(UTC)
        self._store[activity.id] = activity
        return activity

    async def get(self, activity_id: str) -> Activity | None:
        return self._store.get(activity_id)

    async def save(self, activity: Activity) -> Activity:
        self._store[activity.id] = activity
        return activity

    async def delete(self, activity_id: str) -> bool:
        return self._store.pop(activity_id, None) is not None

    async def find(
        self,
        filters: ActivityFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Activity]:
        rows = sorted(
            (a for a in self._store.values() if _matches(a, filters)),
            key=lambda a: as_utc(a.created_at),
        )
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def count(self, filters: ActivityFilter) -> int:
        return sum(1 for a in self._store.values() if _matches(a, filters))

    async def children(self, parent_id: str) -> list[Activity]:
        return sorted(
            (
                a
                for a in self._store.values()
                if a.parent_activity_id == parent_id
            ),
            key=lambda a: as_utc(a.created_at),
        )


class FakeAgentRepository:
    """Dict-backed AgentRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, Agent] = {}

    async def get(self, agent_id: str) -> Agent | None:
        return self._store.get(agent_id)

    async def add(self, agent: Agent) -> Agent:
        now = datetime.now(UTC)
        if agent.created_at is None:
            agent.created_at = now
        agent.updated_at = now
        self._store[agent.id] = agent
        return agent

    async def save(self, agent: Agent) -> Agent:
        agent.updated_at = datetime.now(UTC)
        self._store[agent.id] = agent
        return agent

    async def list_all(self) -> list[Agent]:
        return list(self._store.values())

    async def find_stale(self, cutoff: datetime) -> list[Agent]:
        return [
            a
            for a in self._store.values()
            if a.status != AgentStatus.OFFLINE
            and as_utc(a.last_heartbeat) < as_utc(cutoff)
        ]


class FakeTicketRepository:
    """Dict-backed TicketRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, Ticket] = {}

    async def get(self, ticket_id: str) -> Ticket | None:
        return self._store.get(ticket_id)

    async def add(self, ticket: Ticket) -> Ticket:
        if not ticket.id:
            ticket.id = str(uuid.uuid4())
        if ticket.total_input_tokens is None:
            ticket.total_input_tokens = 0
        if ticket.total_output_tokens is None:
            ticket.total_output_tokens = 0
        self._store[ticket.id] = ticket
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        self._store[ticket.id] = ticket
        return ticket

    async def increment_tokens(
        self, ticket_id: str, input_tokens: int, output_tokens: int
    ) -> bool:
        ticket = self._store.get(ticket_id)
        if ticket is None:
            return False
        ticket.total_input_tokens += input_tokens
        ticket.total_output_tokens += output_tokens
        return True


class FakeHeartbeatRepository:
    """List-backed HeartbeatRepository for testing."""

    def __init__(self) -> None:
        self._store: list[Heartbeat] = []

    async def add(self, heartbeat: Heartbeat) -> Heartbeat:
        if not heartbeat.id:
            heartbeat.id = str(uuid.uuid4())
        if heartbeat.created_at is None:
            heartbeat.created_at = datetime.now(UTC)
        self._store.append(heartbeat)
        return heartbeat

    async def since(self, cutoff: datetime) -> list[Heartbeat]:
        rows = [
            h
            for h in self._store
            if as_utc(h.created_at) >= as_utc(cutoff)
        ]
        return sorted(
            rows, key=lambda h: as_utc(h.created_at), reverse=True
        )

    async def delete_before(self, cutoff: datetime) -> int:
        keep = [
            h for h in self._store if as_utc(h.created_at) >= as_utc(cutoff)
        ]
        removed = len(self._store) - len(keep)
        self._store = keep
        return removed

    @property
    def all(self) -> list[Heartbeat]:
        return list(self._store)


class FakeAgentHistoryRepository:
    """List-backed AgentHistoryRepository for testing."""

    def __init__(self) -> None:
        self._store: list[AgentHistory] = []

    async def add(self, entry: AgentHistory) -> AgentHistory:
        if not entry.id:
            entry.id = str(uuid.uuid4())
        if entry.created_at is None:
            entry.created_at = datetime.now(UTC)
        self._store.append(entry)
        return entry

    async def list_for_agent(
        self, agent_id: str, limit: int = 20
    ) -> list[AgentHistory]:
        rows = [e for e in self._store if e.agent_id == agent_id]
        return list(reversed(rows))[:limit]

    @property
    def all(self) -> list[AgentHistory]:
        return list(self._store)
