"""SQL implementation of TicketRepository."""

from __future__ import annotations

from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.models.ticket import Ticket


class SqlTicketRepository:
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            return await session.get(Ticket, ticket_id)

    async def add(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            session.add(ticket)
            await session.commit()
        return ticket

    async def save(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            merged = await session.merge(ticket)
            await session.commit()
        return merged

    async def increment_tokens(
        self, ticket_id: str, input_tokens: int, output_tokens: int
    ) -> bool:
        """Atomic in-database increment; False if the ticket is unknown."""
        async with self._session_factory() as session:
            result = await session.execute(
                sa_update(Ticket)
                .where(Ticket.id == ticket_id)
                .values(
                    total_input_tokens=(
                        Ticket.total_input_tokens + input_tokens
                    ),
                    total_output_tokens=(
                        Ticket.total_output_tokens + output_tokens
                    ),
                )
            )
            await session.commit()
        rowcount: int = getattr(result, "rowcount", 0) or 0
        return rowcount > 0
