"""Typed telemetry events emitted by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fleetwatch.constants import TelemetryEventType


@dataclass(frozen=True)
class TelemetryEvent:
    """Immutable event describing one engine state change."""

    type: TelemetryEventType
    agent_id: str
    trace_id: str | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(UTC)
    )
    data: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )
