"""Observability layer -- event dispatcher + pluggable handlers."""

from __future__ import annotations

import logging

from fleetwatch.config import Settings
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.events import TelemetryEvent
from fleetwatch.observability.handlers.console import (
    ConsoleTelemetryHandler,
)
from fleetwatch.observability.handlers.cost_aggregator import (
    CostAggregatorHandler,
)
from fleetwatch.observability.handlers.snapshot import SnapshotHandler

logger = logging.getLogger(__name__)

__all__ = [
    "TelemetryDispatcher",
    "TelemetryEvent",
    "initialize_telemetry",
]


def initialize_telemetry(settings: Settings) -> TelemetryDispatcher:
    """Create dispatcher and register handlers based on settings.

    The snapshot handler is always registered: dashboards read the
    current view from it even when event logging is disabled.
    """
    dispatcher = TelemetryDispatcher()
    dispatcher.register(SnapshotHandler())

    if not settings.trace_enabled:
        return dispatcher

    dispatcher.register(ConsoleTelemetryHandler())
    dispatcher.register(CostAggregatorHandler())
    logger.debug(
        "event=telemetry_initialized handlers=%d",
        dispatcher.handler_count,
    )
    return dispatcher
