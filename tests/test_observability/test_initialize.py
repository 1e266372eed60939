"""Tests for observability bootstrap."""

from __future__ import annotations

from fleetwatch.config import Settings
from fleetwatch.observability import initialize_telemetry
from fleetwatch.observability.handlers.snapshot import SnapshotHandler


class TestInitializeTelemetry:
    def test_enabled_registers_all_handlers(self) -> None:
        settings = Settings(_env_file=None, trace_enabled=True)  # type: ignore[call-arg]
        dispatcher = initialize_telemetry(settings)
        assert dispatcher.handler_count == 3
        assert dispatcher.get("console") is not None
        assert dispatcher.get("cost_aggregator") is not None

    def test_disabled_keeps_snapshot(self) -> None:
        """Dashboards still need the snapshot with logging disabled."""
        settings = Settings(_env_file=None, trace_enabled=False)  # type: ignore[call-arg]
        dispatcher = initialize_telemetry(settings)
        assert dispatcher.handler_count == 1
        assert isinstance(dispatcher.get("snapshot"), SnapshotHandler)
