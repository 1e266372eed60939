"""Fan-out dispatcher for telemetry events."""

from __future__ import annotations

import logging

from fleetwatch.observability.events import TelemetryEvent
from fleetwatch.observability.handlers import TelemetryHandler

logger = logging.getLogger(__name__)


class TelemetryDispatcher:
    """Fan-out dispatcher -- emits events to all registered handlers.

    Best-effort delivery: handler errors are logged, never raised.
    """

    def __init__(self) -> None:
        self._handlers: list[TelemetryHandler] = []

    def register(self, handler: TelemetryHandler) -> None:
        """Register a handler. Duplicates (by name) are ignored."""
        if not any(h.name == handler.name for h in self._handlers):
            self._handlers.append(handler)

    def get(self, name: str) -> TelemetryHandler | None:
        for handler in self._handlers:
            if handler.name == name:
                return handler
        return None

    async def emit(self, event: TelemetryEvent) -> None:
        """Best-effort fan-out to all registered handlers."""
        for handler in self._handlers:
            try:
                await handler.handle(event)
            except Exception:
                logger.warning(
                    "event=telemetry_handler_error handler=%s type=%s",
                    handler.name,
                    event.type,
                )

    @property
    def handler_count(self) -> int:
        return len(self._handlers)
