"""Tests for the activity ledger write path and recorders."""

from __future__ import annotations

import logging

import pytest

from fleetwatch.api.app_state import Repos
from fleetwatch.constants import ActivityType, AgentStatus
from fleetwatch.costing.tokens import TokenEstimator
from fleetwatch.errors import ActivityNotFoundError, PersistenceError
from fleetwatch.models.ticket import Ticket
from fleetwatch.repositories.protocols import ActivityFilter
from fleetwatch.services.activity_ledger import (
    ActivityDraft,
    ActivityLedger,
    ActivityPatch,
    new_trace_id,
)
from fleetwatch.services.status_engine import AgentStatusEngine
from fleetwatch.services.trace_chain import TraceChain


async def _ticket(repos: Repos, ticket_id: str = "t1") -> Ticket:
    return await repos.ticket.add(
        Ticket(
            id=ticket_id,
            title="Fix login",
            status="Backlog",
            priority="medium",
            total_input_tokens=0,
            total_output_tokens=0,
        )
    )


class TestAppend:
    async def test_end_to_end_gpt4_example(
        self,
        ledger: ActivityLedger,
        status_engine: AgentStatusEngine,
        repos: Repos,
    ) -> None:
        await status_engine.register("a1")
        await _ticket(repos)
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="tool_call",
                input_tokens=1000,
                output_tokens=500,
                model_name="gpt-4",
                ticket_id="t1",
            )
        )
        assert activity.total_tokens == 1500
        assert activity.cost_input == pytest.approx(0.03)
        assert activity.cost_output == pytest.approx(0.03)
        assert activity.cost_total == pytest.approx(0.06)
        assert activity.meta["cost"]["total_cost"] == pytest.approx(0.06)

        ticket = await repos.ticket.get("t1")
        assert ticket is not None
        assert ticket.total_input_tokens == 1000
        assert ticket.total_output_tokens == 500

        agent = await status_engine.get("a1")
        assert agent.status == AgentStatus.WORKING
        assert len(agent.status_history) == 1

    async def test_missing_tokens_are_estimated(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="agent_turn",
                input_prompt="x" * 100,
                output="y" * 10,
            )
        )
        # Heuristic: mixed text at 0.3 tokens per character
        assert activity.input_tokens == 30
        assert activity.output_tokens == 3
        assert activity.total_tokens == 33
        assert activity.content_parts == {
            "request": {"prompt": "x" * 100},
            "response": {"output": "y" * 10},
        }

    async def test_no_model_means_no_cost(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="api_call",
                input_tokens=100,
                output_tokens=100,
            )
        )
        assert activity.cost_total is None
        assert "cost" not in activity.meta
        assert activity.cost == 0.0

    async def test_zero_tokens_means_no_cost(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="system_event",
                input_tokens=0,
                output_tokens=0,
                model_name="gpt-4",
            )
        )
        assert activity.cost_total is None

    async def test_trace_auto_chains_parents(
        self, ledger: ActivityLedger
    ) -> None:
        trace = new_trace_id()
        first = await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="x", trace_id=trace)
        )
        second = await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="x", trace_id=trace)
        )
        assert first.parent_activity_id is None
        assert second.parent_activity_id == first.id
        assert ledger.trace_chain.head(trace) == second.id

    async def test_explicit_parent_wins(
        self, ledger: ActivityLedger
    ) -> None:
        trace = new_trace_id()
        await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="x", trace_id=trace)
        )
        child = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="x",
                trace_id=trace,
                parent_activity_id="explicit",
            )
        )
        assert child.parent_activity_id == "explicit"

    async def test_missing_ticket_is_logged_not_raised(
        self, ledger: ActivityLedger, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            activity = await ledger.append(
                ActivityDraft(
                    agent_id="a1",
                    activity_type="x",
                    input_tokens=5,
                    output_tokens=5,
                    ticket_id="missing",
                )
            )
        assert activity.id
        assert "event=ticket_missing" in caplog.text

    async def test_side_effect_failure_keeps_activity(
        self,
        repos: Repos,
        status_engine: AgentStatusEngine,
        clock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class BrokenTickets:
            async def increment_tokens(
                self, ticket_id: str, i: int, o: int
            ) -> bool:
                raise RuntimeError("ticket store down")

        ledger = ActivityLedger(
            repos.activity,
            BrokenTickets(),  # type: ignore[arg-type]
            status_engine,
            TraceChain(),
            TokenEstimator(exact=False),
            clock=clock,
        )
        await status_engine.register("a1")
        with caplog.at_level(logging.WARNING):
            activity = await ledger.append(
                ActivityDraft(
                    agent_id="a1",
                    activity_type="tool_call",
                    input_tokens=10,
                    output_tokens=10,
                    ticket_id="t1",
                )
            )
        assert await repos.activity.get(activity.id) is activity
        assert "step=ticket_counters" in caplog.text
        # Later side effects still ran
        assert (await status_engine.get("a1")).status == AgentStatus.WORKING

    async def test_persist_failure_raises_and_skips_side_effects(
        self, repos: Repos, status_engine: AgentStatusEngine, clock
    ) -> None:
        class BrokenActivities:
            async def add(self, activity: object) -> object:
                raise RuntimeError("disk full")

        chain = TraceChain()
        ledger = ActivityLedger(
            BrokenActivities(),  # type: ignore[arg-type]
            repos.ticket,
            status_engine,
            chain,
            TokenEstimator(exact=False),
            clock=clock,
        )
        await status_engine.register("a1")
        with pytest.raises(PersistenceError) as exc_info:
            await ledger.append(
                ActivityDraft(
                    agent_id="a1", activity_type="tool_call", trace_id="t"
                )
            )
        assert exc_info.value.operation == "append activity"
        assert "t" not in chain
        assert (await status_engine.get("a1")).status == AgentStatus.IDLE

    def test_negative_tokens_rejected(self) -> None:
        with pytest.raises(ValueError):
            ActivityDraft(agent_id="a1", activity_type="x", input_tokens=-1)


class TestUpdate:
    async def test_output_reestimates_and_reprices(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="agent_turn",
                input_tokens=1000,
                output_tokens=0,
                model_name="gpt-4",
            )
        )
        updated = await ledger.update(
            activity.id, ActivityPatch(output="z" * 100)
        )
        assert updated.output_tokens == 30
        assert updated.total_tokens == 1030
        assert updated.cost_total == pytest.approx(0.03 + 30 / 1000 * 0.06)

    async def test_explicit_output_tokens(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.append(
            ActivityDraft(
                agent_id="a1",
                activity_type="x",
                input_tokens=10,
                output_tokens=0,
                metadata={"a": 1},
            )
        )
        updated = await ledger.update(
            activity.id,
            ActivityPatch(
                output="done", output_tokens=500, metadata={"b": 2}
            ),
        )
        assert updated.output_tokens == 500
        assert updated.total_tokens == 510
        assert updated.meta == {"a": 1, "b": 2}

    async def test_update_missing_raises(
        self, ledger: ActivityLedger
    ) -> None:
        with pytest.raises(ActivityNotFoundError):
            await ledger.update("nope", ActivityPatch(duration_ms=5))


class TestReads:
    async def test_list_pages(self, ledger: ActivityLedger, clock) -> None:
        for _ in range(5):
            clock.advance(seconds=1)
            await ledger.append(ActivityDraft(agent_id="a1", activity_type="x"))
        await ledger.append(ActivityDraft(agent_id="a2", activity_type="x"))

        page = await ledger.list(ActivityFilter(agent_id="a1"), page=2, limit=2)
        assert page.total == 5
        assert page.pages == 3
        assert len(page.items) == 2

    async def test_trace_and_children(self, ledger: ActivityLedger) -> None:
        first = await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="x", trace_id="tr")
        )
        await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="y", trace_id="tr")
        )
        trace = await ledger.trace("tr")
        assert [a.activity_type for a in trace] == ["x", "y"]
        children = await ledger.children(first.id)
        assert [c.activity_type for c in children] == ["y"]

    async def test_delete(self, ledger: ActivityLedger) -> None:
        activity = await ledger.append(
            ActivityDraft(agent_id="a1", activity_type="x")
        )
        await ledger.delete(activity.id)
        with pytest.raises(ActivityNotFoundError):
            await ledger.get(activity.id)
        with pytest.raises(ActivityNotFoundError):
            await ledger.delete(activity.id)


class TestRecorders:
    async def test_record_tool_call(self, ledger: ActivityLedger) -> None:
        activity = await ledger.record_tool_call(
            "a1", "search", {"q": "docs"}, ["r1"], duration_ms=12
        )
        assert activity.activity_type == ActivityType.TOOL_CALL
        assert activity.tool_name == "search"
        assert activity.duration_ms == 12
        assert activity.input_tokens > 0

    async def test_record_api_call(self, ledger: ActivityLedger) -> None:
        activity = await ledger.record_api_call(
            "a1",
            "https://api.example.com/v1",
            "POST",
            201,
            request_body={"x": 1},
        )
        assert activity.api_status_code == 201
        assert activity.content_parts["request"]["method"] == "POST"
        assert activity.description == "POST https://api.example.com/v1 -> 201"

    async def test_record_ticket_operation(
        self, ledger: ActivityLedger
    ) -> None:
        activity = await ledger.record_ticket_operation(
            "a1", "assign", "t1", {"to": "a2"}
        )
        assert activity.activity_type == ActivityType.ASSIGN_TICKET
        assert activity.ticket_id == "t1"

    async def test_unknown_ticket_operation(
        self, ledger: ActivityLedger
    ) -> None:
        with pytest.raises(ValueError, match="Unknown ticket operation"):
            await ledger.record_ticket_operation("a1", "archive", "t1")

    async def test_record_with_timing_success(
        self, ledger: ActivityLedger
    ) -> None:
        async def work() -> str:
            return "ok"

        result, activity = await ledger.record_with_timing(
            ActivityDraft(agent_id="a1", activity_type="agent_turn"), work
        )
        assert result == "ok"
        assert activity.duration_ms >= 0

    async def test_record_with_timing_failure_records_error(
        self, ledger: ActivityLedger, repos: Repos
    ) -> None:
        async def work() -> str:
            raise RuntimeError("model timeout")

        with pytest.raises(RuntimeError, match="model timeout"):
            await ledger.record_with_timing(
                ActivityDraft(agent_id="a1", activity_type="agent_turn"),
                work,
            )
        recorded = await repos.activity.find(ActivityFilter())
        assert len(recorded) == 1
        assert recorded[0].activity_type == ActivityType.AGENT_ERROR
        assert "model timeout" in recorded[0].description
