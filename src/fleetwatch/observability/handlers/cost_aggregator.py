"""Cost aggregator handler -- tracks token costs per trace."""

from __future__ import annotations

from dataclasses import dataclass

from fleetwatch.constants import TelemetryEventType
from fleetwatch.observability.events import TelemetryEvent


@dataclass
class TraceCost:
    """Accumulated cost for a single trace."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0
    activity_count: int = 0


class CostAggregatorHandler:
    """Tracks recorded-activity token costs per trace_id.

    Activities without a trace are accumulated under their agent id.
    """

    def __init__(self) -> None:
        self._costs: dict[str, TraceCost] = {}

    @property
    def name(self) -> str:
        return "cost_aggregator"

    async def handle(self, event: TelemetryEvent) -> None:
        if event.type != TelemetryEventType.ACTIVITY_RECORDED:
            return
        key = event.trace_id or event.agent_id
        cost = self._costs.setdefault(key, TraceCost())
        cost.input_tokens += int(event.data.get("input_tokens", 0))
        cost.output_tokens += int(event.data.get("output_tokens", 0))
        cost.total_cost += float(event.data.get("cost_total") or 0.0)
        cost.activity_count += 1

    def get_cost(self, trace_id: str) -> TraceCost:
        return self._costs.get(trace_id, TraceCost())

    def all_costs(self) -> dict[str, TraceCost]:
        return dict(self._costs)
