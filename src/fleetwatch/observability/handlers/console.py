"""Console telemetry handler -- key=value log output."""

from __future__ import annotations

import logging

from fleetwatch.observability.events import TelemetryEvent

logger = logging.getLogger(__name__)


class ConsoleTelemetryHandler:
    """Logs telemetry events as key=value messages."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        self._level = level

    @property
    def name(self) -> str:
        return "console"

    async def handle(self, event: TelemetryEvent) -> None:
        parts = [
            f"telemetry_type={event.type}",
            f"agent_id={event.agent_id}",
        ]
        if event.trace_id:
            parts.append(f"trace_id={event.trace_id}")
        for k, v in event.data.items():
            parts.append(f"{k}={v}")
        logger.log(self._level, " ".join(parts))
