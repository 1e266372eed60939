"""Token → dollar cost calculation and cost formatting."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from fleetwatch.constants import (
    AGGREGATED_MODEL,
    CURRENCY,
    DEFAULT_DAILY_BUDGET,
    UNKNOWN_MODEL,
    CostTier,
)
from fleetwatch.costing.pricing import (
    ModelPricing,
    PricingResolver,
    resolve_pricing,
)


@dataclass(frozen=True)
class CostBreakdown:
    """Cost of one priced unit of work (or a sum of them)."""

    input_cost: float
    output_cost: float
    total_cost: float
    model_name: str
    input_tokens: int
    output_tokens: int
    pricing: ModelPricing
    currency: str = CURRENCY

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
            "model_name": self.model_name,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "pricing": {
                "input": self.pricing.input,
                "output": self.pricing.output,
            },
        }


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model_name: str | None,
    resolver: PricingResolver | None = None,
) -> CostBreakdown:
    """Cost = tokens / 1000 × price-per-1000, per direction.

    Pure and deterministic. Unknown models use the default price pair;
    zero tokens cost zero.
    """
    pricing = (
        resolver.resolve(model_name)
        if resolver is not None
        else resolve_pricing(model_name)
    )
    input_cost = (input_tokens / 1000) * pricing.input
    output_cost = (output_tokens / 1000) * pricing.output
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
        model_name=model_name or "",
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        pricing=pricing,
    )


# Pre-call estimates use the same arithmetic
estimate_cost = calculate_cost


def sum_costs(breakdowns: Iterable[CostBreakdown]) -> CostBreakdown:
    input_cost = output_cost = 0.0
    input_tokens = output_tokens = 0
    for b in breakdowns:
        input_cost += b.input_cost
        output_cost += b.output_cost
        input_tokens += b.input_tokens
        output_tokens += b.output_tokens
    return CostBreakdown(
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=input_cost + output_cost,
        model_name=AGGREGATED_MODEL,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        pricing=ModelPricing(0.0, 0.0),
    )


def format_cost(cost: float) -> str:
    """Human-readable cost with more decimals for sub-cent values."""
    if cost == 0:
        return "$0.00"
    if cost < 0.0001:
        return "< $0.0001"
    if cost < 0.01:
        return "$" + f"{cost:.6f}".rstrip("0").rstrip(".")
    if cost < 1:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def format_large_cost(cost: float) -> str:
    if cost >= 1_000_000:
        return f"${cost / 1_000_000:.2f}M"
    if cost >= 1_000:
        return f"${cost / 1_000:.2f}K"
    return format_cost(cost)


def cost_tier(cost: float) -> CostTier:
    if cost == 0:
        return CostTier.FREE
    if cost < 0.01:
        return CostTier.LOW
    if cost < 0.10:
        return CostTier.MEDIUM
    if cost < 1.0:
        return CostTier.HIGH
    return CostTier.VERY_HIGH


@dataclass
class BudgetTracker:
    """In-memory running spend against a daily budget."""

    daily_budget: float = DEFAULT_DAILY_BUDGET
    current_spend: float = 0.0
    tracked: int = 0
    by_model: dict[str, float] = field(
        default_factory=lambda: dict[str, float]()
    )

    def track(self, cost: CostBreakdown) -> None:
        self.tracked += 1
        self.current_spend += cost.total_cost
        key = cost.model_name or UNKNOWN_MODEL
        self.by_model[key] = self.by_model.get(key, 0.0) + cost.total_cost

    @property
    def remaining(self) -> float:
        return max(0.0, self.daily_budget - self.current_spend)

    @property
    def utilization(self) -> float:
        """Percent of the daily budget spent."""
        if self.daily_budget <= 0:
            return 0.0
        return self.current_spend / self.daily_budget * 100

    def is_exceeded(self) -> bool:
        return self.current_spend >= self.daily_budget

    def model_breakdown(self) -> dict[str, dict[str, float]]:
        return {
            model: {
                "cost": cost,
                "percentage": (
                    cost / self.current_spend * 100
                    if self.current_spend > 0
                    else 0.0
                ),
            }
            for model, cost in self.by_model.items()
        }

    def summary(self) -> dict[str, Any]:
        return {
            "total_spend": self.current_spend,
            "budget": self.daily_budget,
            "remaining": self.remaining,
            "utilization": self.utilization,
            "activity_count": self.tracked,
            "model_breakdown": self.model_breakdown(),
        }

    def reset(self) -> None:
        self.current_spend = 0.0
        self.tracked = 0
        self.by_model.clear()
