"""SQL implementations of HeartbeatRepository and AgentHistoryRepository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.timeutil import as_utc


class SqlHeartbeatRepository:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._session_factory = session_factory

    async def add(self, heartbeat: Heartbeat) -> Heartbeat:
        async with self._session_factory() as session:
            session.add(heartbeat)
            await session.commit()
        return heartbeat

    async def since(self, cutoff: datetime) -> list[Heartbeat]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Heartbeat)
                .where(Heartbeat.created_at >= as_utc(cutoff))
                .order_by(Heartbeat.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                sa_delete(Heartbeat).where(
                    Heartbeat.created_at < as_utc(cutoff)
                )
            )
            await session.commit()
        return int(getattr(result, "rowcount", 0) or 0)


class SqlAgentHistoryRepository:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._session_factory = session_factory

    async def add(self, entry: AgentHistory) -> AgentHistory:
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
        return entry

    async def list_for_agent(
        self, agent_id: str, limit: int = 20
    ) -> list[AgentHistory]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AgentHistory)
                .where(AgentHistory.agent_id == agent_id)
                .order_by(AgentHistory.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
