"""SQL implementation of ActivityRepository.

Each call runs in its own short-lived session and commits before
returning, so a stored activity stays stored even when a later
side effect of the same append fails.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.models.activity import Activity
from fleetwatch.repositories.protocols import ActivityFilter
from fleetwatch.timeutil import as_utc


def _apply_filters(stmt: Any, filters: ActivityFilter) -> Any:
    if filters.agent_id is not None:
        stmt = stmt.where(Activity.agent_id == filters.agent_id)
    if filters.ticket_id is not None:
        stmt = stmt.where(Activity.ticket_id == filters.ticket_id)
    if filters.activity_type is not None:
        stmt = stmt.where(Activity.activity_type == filters.activity_type)
    if filters.trace_id is not None:
        stmt = stmt.where(Activity.trace_id == filters.trace_id)
    if filters.model_name is not None:
        stmt = stmt.where(Activity.model_name == filters.model_name)
    if filters.start is not None:
        stmt = stmt.where(Activity.created_at >= as_utc(filters.start))
    if filters.end is not None:
        stmt = stmt.where(Activity.created_at <= as_utc(filters.end))
    return stmt


class SqlActivityRepository:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._session_factory = session_factory

    async def add(self, activity: Activity) -> Activity:
        async with self._session_factory() as session:
            session.add(activity)
            await session.commit()
        return activity

    async def get(self, activity_id: str) -> Activity | None:
        async with self._session_factory() as session:
            return await session.get(Activity, activity_id)

    async def save(self, activity: Activity) -> Activity:
        async with self._session_factory() as session:
            merged = await session.merge(activity)
            await session.commit()
        return merged

    async def delete(self, activity_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                sa_delete(Activity).where(Activity.id == activity_id)
            )
            await session.commit()
        rowcount: int = getattr(result, "rowcount", 0) or 0
        return rowcount > 0

    async def find(
        self,
        filters: ActivityFilter,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Activity]:
        stmt = _apply_filters(select(Activity), filters).order_by(
            Activity.created_at.asc()
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, filters: ActivityFilter) -> int:
        stmt = _apply_filters(
            select(func.count()).select_from(Activity), filters
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def children(self, parent_id: str) -> list[Activity]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Activity)
                .where(Activity.parent_activity_id == parent_id)
                .order_by(Activity.created_at.asc())
            )
            return list(result.scalars().all())
