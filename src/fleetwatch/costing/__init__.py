"""Pricing, cost calculation and token estimation."""

from fleetwatch.costing.calculator import (
    BudgetTracker,
    CostBreakdown,
    calculate_cost,
    cost_tier,
    estimate_cost,
    format_cost,
    format_large_cost,
    sum_costs,
)
from fleetwatch.costing.pricing import (
    DEFAULT_PRICING,
    MODEL_PRICING,
    ModelPricing,
    PricingResolver,
    resolve_pricing,
)
from fleetwatch.costing.tokens import (
    TokenEstimator,
    TokenStats,
    approximate_tokens,
    estimate_tokens,
    format_token_count,
)

__all__ = [
    "DEFAULT_PRICING",
    "MODEL_PRICING",
    "BudgetTracker",
    "CostBreakdown",
    "ModelPricing",
    "PricingResolver",
    "TokenEstimator",
    "TokenStats",
    "approximate_tokens",
    "calculate_cost",
    "cost_tier",
    "estimate_cost",
    "estimate_tokens",
    "format_cost",
    "format_large_cost",
    "format_token_count",
    "resolve_pricing",
    "sum_costs",
]
