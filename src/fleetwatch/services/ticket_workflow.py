"""Ticket status policy and the token counters tickets expose."""

from __future__ import annotations

import logging
import uuid

from fleetwatch.constants import TicketStatus
from fleetwatch.errors import (
    PersistenceError,
    TicketNotFoundError,
    TicketTransitionError,
)
from fleetwatch.models.ticket import Ticket
from fleetwatch.repositories.protocols import TicketRepository
from fleetwatch.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)

# Directed workflow used when strict mode is enabled
STRICT_TRANSITIONS: dict[TicketStatus, tuple[TicketStatus, ...]] = {
    TicketStatus.BACKLOG: (TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS),
    TicketStatus.ASSIGNED: (TicketStatus.IN_PROGRESS, TicketStatus.BACKLOG),
    TicketStatus.IN_PROGRESS: (TicketStatus.REVIEW, TicketStatus.ASSIGNED),
    TicketStatus.REVIEW: (TicketStatus.DONE, TicketStatus.IN_PROGRESS),
    TicketStatus.DONE: (),
}


class TicketWorkflow:
    """Which Kanban moves are allowed.

    Permissive by default: any column to any other, with ``Assigned``
    requiring an assignee. ``strict=True`` restricts moves to
    ``STRICT_TRANSITIONS``.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def valid_next_states(self, current: str) -> list[TicketStatus]:
        if self.strict:
            try:
                return list(STRICT_TRANSITIONS[TicketStatus(current)])
            except ValueError:
                return []
        return [s for s in TicketStatus if s != current]

    def check_transition(
        self,
        current: str,
        target: str,
        assignee_id: str | None,
    ) -> TicketStatus:
        try:
            status = TicketStatus(target)
        except ValueError:
            valid = ", ".join(TicketStatus)
            raise TicketTransitionError(
                f"Invalid status: {target}. Must be one of: {valid}"
            ) from None
        if status != current:
            allowed = self.valid_next_states(current)
            if status not in allowed:
                raise TicketTransitionError(
                    f"Cannot transition from {current} to {status}."
                    f" Valid transitions: {', '.join(allowed) or 'none'}"
                )
        if status == TicketStatus.ASSIGNED and not assignee_id:
            raise TicketTransitionError(
                "Cannot assign ticket without an assignee"
            )
        return status


class TicketService:
    def __init__(
        self,
        repo: TicketRepository,
        workflow: TicketWorkflow | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repo = repo
        self._workflow = workflow or TicketWorkflow()
        self._clock = clock

    @property
    def workflow(self) -> TicketWorkflow:
        return self._workflow

    async def get(self, ticket_id: str) -> Ticket:
        ticket = await self._repo.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def create(
        self,
        title: str,
        *,
        description: str | None = None,
        priority: str = "medium",
        assignee_id: str | None = None,
        ticket_id: str | None = None,
    ) -> Ticket:
        now = self._clock()
        ticket = Ticket(
            id=ticket_id or str(uuid.uuid4()),
            title=title,
            description=description,
            status=(
                TicketStatus.ASSIGNED if assignee_id else TicketStatus.BACKLOG
            ),
            priority=priority,
            assignee_id=assignee_id,
            total_input_tokens=0,
            total_output_tokens=0,
            created_at=now,
            updated_at=now,
        )
        try:
            return await self._repo.add(ticket)
        except Exception as exc:
            raise PersistenceError("create ticket", str(exc)) from exc

    async def move(
        self,
        ticket_id: str,
        status: str,
        assignee_id: str | None = None,
    ) -> Ticket:
        ticket = await self.get(ticket_id)
        assignee = assignee_id or ticket.assignee_id
        target = self._workflow.check_transition(
            ticket.status, status, assignee
        )
        previous = ticket.status
        ticket.status = target
        ticket.assignee_id = assignee
        ticket.updated_at = self._clock()
        try:
            ticket = await self._repo.save(ticket)
        except Exception as exc:
            raise PersistenceError("update ticket", str(exc)) from exc
        if previous != target:
            logger.info(
                "event=ticket_moved ticket_id=%s from=%s to=%s",
                ticket_id,
                previous,
                target,
            )
        return ticket

    async def add_tokens(
        self, ticket_id: str, input_tokens: int, output_tokens: int
    ) -> None:
        """Increment the ticket's counters; counters never decrease."""
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token increments must be non-negative")
        try:
            found = await self._repo.increment_tokens(
                ticket_id, input_tokens, output_tokens
            )
        except Exception as exc:
            raise PersistenceError("increment ticket tokens", str(exc)) from exc
        if not found:
            raise TicketNotFoundError(ticket_id)
