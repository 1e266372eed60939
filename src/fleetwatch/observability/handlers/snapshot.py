"""Snapshot handler -- the current view pushed to dashboard clients."""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from typing import Any

from fleetwatch.constants import RECENT_ACTIVITY_LIMIT, TelemetryEventType
from fleetwatch.observability.events import TelemetryEvent


class SnapshotHandler:
    """Keeps the latest known status per agent and recent activities.

    How the snapshot reaches a client (SSE, websocket, polling) is up
    to the caller; this only maintains the current state.
    """

    def __init__(self, recent_limit: int = RECENT_ACTIVITY_LIMIT) -> None:
        self._statuses: dict[str, str] = {}
        self._recent: deque[dict[str, Any]] = deque(maxlen=recent_limit)
        self._updated_at: datetime | None = None

    @property
    def name(self) -> str:
        return "snapshot"

    async def handle(self, event: TelemetryEvent) -> None:
        self._updated_at = event.timestamp
        if event.type in (
            TelemetryEventType.STATUS_CHANGED,
            TelemetryEventType.AGENT_OFFLINE,
            TelemetryEventType.HEARTBEAT,
        ):
            status = event.data.get("status")
            if status:
                self._statuses[event.agent_id] = str(status)
        elif event.type == TelemetryEventType.ACTIVITY_RECORDED:
            self._recent.appendleft({
                "activity_id": event.data.get("activity_id"),
                "agent_id": event.agent_id,
                "activity_type": event.data.get("activity_type"),
                "total_tokens": event.data.get("total_tokens", 0),
                "cost_total": event.data.get("cost_total"),
                "timestamp": event.timestamp.isoformat(),
            })

    def snapshot(self) -> dict[str, Any]:
        return {
            "agents": dict(self._statuses),
            "recent_activities": list(self._recent),
            "updated_at": (
                self._updated_at or datetime.now(UTC)
            ).isoformat(),
        }
