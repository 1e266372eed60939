"""Pydantic models for analytics output."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from fleetwatch.constants import (
    BUDGET_ALERT_RATIO,
    DEFAULT_DAILY_BUDGET,
    MIN_ANOMALY_COST,
    SPIKE_STDDEV_THRESHOLD,
    AnomalyType,
    Severity,
)


class GroupTotals(BaseModel):
    """Token and cost sums for one partition of a window."""

    key: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    activities: int = 0


class TokenBucket(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0
    activities: int = 0
    cost: float = 0.0


class TokenAggregation(BaseModel):
    """System-wide token totals with per-dimension breakdowns.

    Activities with no tokens count toward ``total_activities`` only.
    """

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    by_agent: dict[str, TokenBucket] = Field(default_factory=dict)
    by_ticket: dict[str, TokenBucket] = Field(default_factory=dict)
    by_model: dict[str, TokenBucket] = Field(default_factory=dict)
    by_day: dict[str, TokenBucket] = Field(default_factory=dict)
    total_activities: int = 0
    activities_with_tokens: int = 0
    last_updated: datetime


class TrendPoint(BaseModel):
    date: str
    cost: float
    tokens: int
    activities: int
    agents: int


class DailySummary(BaseModel):
    date: str
    total_cost: float
    total_tokens: int
    input_tokens: int
    output_tokens: int
    activities: int
    unique_agents: int
    top_model: str
    top_agent: str


class PeriodStats(BaseModel):
    cost: float = 0.0
    tokens: int = 0
    activities: int = 0


class PeriodChange(BaseModel):
    """Percentage change per measure; 100.0 when the previous value is 0."""

    cost: float
    tokens: float
    activities: float


class GroupComparison(BaseModel):
    key: str
    current: PeriodStats
    previous: PeriodStats
    change: PeriodChange


class PeriodComparison(BaseModel):
    dimension: str
    groups: list[GroupComparison] = Field(
        default_factory=lambda: list[GroupComparison]()
    )
    current_total: PeriodStats
    previous_total: PeriodStats
    total_change: PeriodChange


class BudgetForecast(BaseModel):
    current_spend: float
    daily_budget: float
    monthly_budget: float
    days_in_month: int
    days_elapsed: int
    days_remaining: int
    projected_monthly: float
    projected_daily: float
    remaining_budget: float
    recommended_daily_budget: float
    at_risk: bool


class CostAnomaly(BaseModel):
    """A derived, never persisted, cost finding."""

    id: str
    type: AnomalyType
    severity: Severity
    description: str
    observed_value: float
    expected_value: float
    timestamp: datetime
    agent_id: str | None = None
    model_name: str | None = None


class AnomalyOptions(BaseModel):
    spike_threshold: float = Field(default=SPIKE_STDDEV_THRESHOLD, gt=0)
    min_anomaly_cost: float = Field(default=MIN_ANOMALY_COST, ge=0)
    budget_ratio: float = Field(default=BUDGET_ALERT_RATIO, gt=0)
    daily_budget: float = Field(default=DEFAULT_DAILY_BUDGET, gt=0)


class TodayKPIs(BaseModel):
    cost: float
    tokens: int
    activities: int
    agents: int


class BudgetKPIs(BaseModel):
    used: float
    total: float
    percentage: float


class ProjectedKPIs(BaseModel):
    monthly: float
    daily: float


class CostKPIs(BaseModel):
    today: TodayKPIs
    budget: BudgetKPIs
    projected: ProjectedKPIs


class DashboardTokenStats(BaseModel):
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
    total_cost: float
    today_input: int
    today_output: int
    today_total: int
    today_cost: float


class EntityTokenStats(BaseModel):
    """Token totals for one agent or ticket."""

    total_input: int
    total_output: int
    total: int
    activities: int
    cost: float
    average_per_activity: int
    agents: list[str] = Field(default_factory=lambda: list[str]())
