"""Pluggable telemetry handler backends."""

from __future__ import annotations

from typing import Protocol

from fleetwatch.observability.events import TelemetryEvent


class TelemetryHandler(Protocol):
    """Pluggable telemetry handler -- implement for each backend."""

    @property
    def name(self) -> str: ...

    async def handle(self, event: TelemetryEvent) -> None: ...
