"""Tests for the snapshot, cost aggregator and console handlers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from fleetwatch.constants import TelemetryEventType
from fleetwatch.observability.events import TelemetryEvent
from fleetwatch.observability.handlers.console import (
    ConsoleTelemetryHandler,
)
from fleetwatch.observability.handlers.cost_aggregator import (
    CostAggregatorHandler,
)
from fleetwatch.observability.handlers.snapshot import SnapshotHandler

WHEN = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _recorded(
    agent_id: str = "a1",
    trace_id: str | None = None,
    cost: float | None = 0.06,
) -> TelemetryEvent:
    return TelemetryEvent(
        type=TelemetryEventType.ACTIVITY_RECORDED,
        agent_id=agent_id,
        trace_id=trace_id,
        timestamp=WHEN,
        data={
            "activity_id": "act-1",
            "activity_type": "tool_call",
            "input_tokens": 1000,
            "output_tokens": 500,
            "total_tokens": 1500,
            "cost_total": cost,
        },
    )


class TestSnapshotHandler:
    async def test_tracks_latest_status(self) -> None:
        handler = SnapshotHandler()
        for kind, status in (
            (TelemetryEventType.HEARTBEAT, "IDLE"),
            (TelemetryEventType.STATUS_CHANGED, "WORKING"),
            (TelemetryEventType.AGENT_OFFLINE, "OFFLINE"),
        ):
            await handler.handle(
                TelemetryEvent(
                    type=kind, agent_id="a1", data={"status": status}
                )
            )
        assert handler.snapshot()["agents"] == {"a1": "OFFLINE"}

    async def test_recent_activities_newest_first_and_bounded(self) -> None:
        handler = SnapshotHandler(recent_limit=2)
        for agent_id in ("a1", "a2", "a3"):
            await handler.handle(_recorded(agent_id))

        recent = handler.snapshot()["recent_activities"]
        assert [r["agent_id"] for r in recent] == ["a3", "a2"]
        assert recent[0]["timestamp"] == WHEN.isoformat()

    async def test_updated_at_follows_events(self) -> None:
        handler = SnapshotHandler()
        await handler.handle(_recorded())
        assert handler.snapshot()["updated_at"] == WHEN.isoformat()


class TestCostAggregator:
    async def test_accumulates_per_trace(self) -> None:
        handler = CostAggregatorHandler()
        await handler.handle(_recorded(trace_id="tr-1"))
        await handler.handle(_recorded(trace_id="tr-1"))
        await handler.handle(_recorded(agent_id="a9", cost=None))

        cost = handler.get_cost("tr-1")
        assert cost.activity_count == 2
        assert cost.input_tokens == 2000
        assert cost.total_cost == pytest.approx(0.12)
        # Untraced activities fall back to the agent id
        assert handler.get_cost("a9").total_cost == 0.0
        assert set(handler.all_costs()) == {"tr-1", "a9"}

    async def test_ignores_other_events(self) -> None:
        handler = CostAggregatorHandler()
        await handler.handle(
            TelemetryEvent(type=TelemetryEventType.HEARTBEAT, agent_id="a1")
        )
        assert handler.all_costs() == {}


class TestConsoleHandler:
    async def test_logs_key_value_pairs(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        handler = ConsoleTelemetryHandler(level=logging.INFO)
        with caplog.at_level(logging.INFO):
            await handler.handle(_recorded(trace_id="tr-1"))
        assert "agent_id=a1" in caplog.text
        assert "trace_id=tr-1" in caplog.text
        assert "total_tokens=1500" in caplog.text
