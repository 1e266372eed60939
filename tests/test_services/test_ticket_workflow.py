"""Tests for ticket workflow policy and ticket token counters."""

from __future__ import annotations

import pytest

from fleetwatch.api.app_state import Repos
from fleetwatch.constants import TicketStatus
from fleetwatch.errors import TicketNotFoundError, TicketTransitionError
from fleetwatch.services.ticket_workflow import TicketService, TicketWorkflow


@pytest.fixture
def service(repos: Repos, clock) -> TicketService:
    return TicketService(repos.ticket, clock=clock)


class TestPermissiveWorkflow:
    def test_any_column_reachable(self) -> None:
        workflow = TicketWorkflow()
        assert workflow.check_transition(
            "Done", "Backlog", None
        ) == TicketStatus.BACKLOG
        assert len(workflow.valid_next_states("Backlog")) == 4

    def test_assigned_requires_assignee(self) -> None:
        with pytest.raises(TicketTransitionError, match="assignee"):
            TicketWorkflow().check_transition("Backlog", "Assigned", None)

    def test_invalid_status(self) -> None:
        with pytest.raises(TicketTransitionError, match="Invalid status"):
            TicketWorkflow().check_transition("Backlog", "Blocked", None)


class TestStrictWorkflow:
    def test_follows_directed_graph(self) -> None:
        workflow = TicketWorkflow(strict=True)
        assert workflow.check_transition(
            "InProgress", "Review", "a1"
        ) == TicketStatus.REVIEW

    def test_rejects_skip(self) -> None:
        with pytest.raises(TicketTransitionError, match="Cannot transition"):
            TicketWorkflow(strict=True).check_transition(
                "Backlog", "Done", None
            )

    def test_done_is_terminal(self) -> None:
        assert TicketWorkflow(strict=True).valid_next_states("Done") == []

    def test_same_status_allowed(self) -> None:
        assert TicketWorkflow(strict=True).check_transition(
            "Done", "Done", None
        ) == TicketStatus.DONE


class TestTicketService:
    async def test_create_defaults(self, service: TicketService) -> None:
        ticket = await service.create("Write docs")
        assert ticket.status == TicketStatus.BACKLOG
        assert ticket.total_input_tokens == 0

    async def test_create_with_assignee(self, service: TicketService) -> None:
        ticket = await service.create("Write docs", assignee_id="a1")
        assert ticket.status == TicketStatus.ASSIGNED

    async def test_move(self, service: TicketService) -> None:
        ticket = await service.create("Write docs", assignee_id="a1")
        moved = await service.move(ticket.id, "InProgress")
        assert moved.status == TicketStatus.IN_PROGRESS
        assert moved.assignee_id == "a1"

    async def test_move_missing(self, service: TicketService) -> None:
        with pytest.raises(TicketNotFoundError):
            await service.move("nope", "Done")

    async def test_add_tokens_accumulates(
        self, service: TicketService
    ) -> None:
        ticket = await service.create("Write docs")
        await service.add_tokens(ticket.id, 10, 5)
        await service.add_tokens(ticket.id, 1, 1)
        fetched = await service.get(ticket.id)
        assert fetched.total_input_tokens == 11
        assert fetched.total_output_tokens == 6

    async def test_add_tokens_rejects_negative(
        self, service: TicketService
    ) -> None:
        ticket = await service.create("Write docs")
        with pytest.raises(ValueError):
            await service.add_tokens(ticket.id, -1, 0)

    async def test_add_tokens_missing_ticket(
        self, service: TicketService
    ) -> None:
        with pytest.raises(TicketNotFoundError):
            await service.add_tokens("nope", 1, 1)
