"""Typed convenience functions for emitting telemetry events."""

from __future__ import annotations

from fleetwatch.constants import TelemetryEventType
from fleetwatch.models.activity import Activity
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.events import TelemetryEvent


async def emit_activity_recorded(
    dispatcher: TelemetryDispatcher | None,
    activity: Activity,
) -> None:
    if dispatcher is None:
        return
    await dispatcher.emit(
        TelemetryEvent(
            type=TelemetryEventType.ACTIVITY_RECORDED,
            agent_id=activity.agent_id,
            trace_id=activity.trace_id,
            data={
                "activity_id": activity.id,
                "activity_type": activity.activity_type,
                "input_tokens": activity.input_tokens,
                "output_tokens": activity.output_tokens,
                "total_tokens": activity.total_tokens,
                "cost_total": activity.cost_total,
            },
        )
    )


async def emit_activity_updated(
    dispatcher: TelemetryDispatcher | None,
    activity: Activity,
    fields: list[str],
) -> None:
    if dispatcher is None:
        return
    await dispatcher.emit(
        TelemetryEvent(
            type=TelemetryEventType.ACTIVITY_UPDATED,
            agent_id=activity.agent_id,
            trace_id=activity.trace_id,
            data={"activity_id": activity.id, "fields": fields},
        )
    )


async def emit_status_changed(
    dispatcher: TelemetryDispatcher | None,
    agent_id: str,
    previous: str,
    status: str,
    reason: str,
) -> None:
    if dispatcher is None:
        return
    await dispatcher.emit(
        TelemetryEvent(
            type=TelemetryEventType.STATUS_CHANGED,
            agent_id=agent_id,
            data={
                "previous": previous,
                "status": status,
                "reason": reason,
            },
        )
    )


async def emit_agent_offline(
    dispatcher: TelemetryDispatcher | None,
    agent_id: str,
    previous: str,
    seconds_since_heartbeat: float,
) -> None:
    if dispatcher is None:
        return
    await dispatcher.emit(
        TelemetryEvent(
            type=TelemetryEventType.AGENT_OFFLINE,
            agent_id=agent_id,
            data={
                "previous": previous,
                "status": "OFFLINE",
                "seconds_since_heartbeat": round(
                    seconds_since_heartbeat, 1
                ),
            },
        )
    )


async def emit_heartbeat(
    dispatcher: TelemetryDispatcher | None,
    agent_id: str,
    status: str,
) -> None:
    if dispatcher is None:
        return
    await dispatcher.emit(
        TelemetryEvent(
            type=TelemetryEventType.HEARTBEAT,
            agent_id=agent_id,
            data={"status": status},
        )
    )
