"""Emitters build the expected events and tolerate a missing dispatcher."""

from __future__ import annotations

from fleetwatch.constants import TelemetryEventType
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.emitters import (
    emit_agent_offline,
    emit_heartbeat,
    emit_status_changed,
)
from fleetwatch.observability.events import TelemetryEvent


class Collector:
    def __init__(self) -> None:
        self.received: list[TelemetryEvent] = []

    @property
    def name(self) -> str:
        return "collector"

    async def handle(self, event: TelemetryEvent) -> None:
        self.received.append(event)


async def test_no_dispatcher_is_noop() -> None:
    await emit_heartbeat(None, "a1", "IDLE")
    await emit_status_changed(None, "a1", "IDLE", "WORKING", "Executing tool")


async def test_status_and_offline_events() -> None:
    collector = Collector()
    dispatcher = TelemetryDispatcher()
    dispatcher.register(collector)

    await emit_status_changed(
        dispatcher, "a1", "IDLE", "WORKING", "Executing tool"
    )
    await emit_agent_offline(dispatcher, "a1", "WORKING", 61.04)

    changed, offline = collector.received
    assert changed.type == TelemetryEventType.STATUS_CHANGED
    assert changed.data["reason"] == "Executing tool"
    assert offline.type == TelemetryEventType.AGENT_OFFLINE
    assert offline.data == {
        "previous": "WORKING",
        "status": "OFFLINE",
        "seconds_since_heartbeat": 61.0,
    }
