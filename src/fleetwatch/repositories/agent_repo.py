"""SQL implementation of AgentRepository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.constants import AgentStatus
from fleetwatch.models.agent import Agent
from fleetwatch.timeutil import as_utc


class SqlAgentRepository:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, agent_id: str) -> Agent | None:
        async with self._session_factory() as session:
            return await session.get(Agent, agent_id)

    async def add(self, agent: Agent) -> Agent:
        async with self._session_factory() as session:
            session.add(agent)
            await session.commit()
        return agent

    async def save(self, agent: Agent) -> Agent:
        """Write the whole record back (last write wins)."""
        async with self._session_factory() as session:
            merged = await session.merge(agent)
            await session.commit()
        return merged

    async def list_all(self) -> list[Agent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Agent).order_by(Agent.created_at.asc())
            )
            return list(result.scalars().all())

    async def find_stale(self, cutoff: datetime) -> list[Agent]:
        """Agents not OFFLINE whose last heartbeat is older than cutoff."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Agent).where(
                    Agent.status != AgentStatus.OFFLINE,
                    Agent.last_heartbeat < as_utc(cutoff),
                )
            )
            return list(result.scalars().all())
