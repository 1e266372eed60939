"""Pure reductions over a slice of the activity ledger.

Nothing here performs I/O or keeps counters between calls; every
function takes the activities it should reduce. Grouped totals always
sum to the ungrouped total of the same slice.
"""

from __future__ import annotations

import calendar
import csv
import io
import math
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime, time
from typing import Any

from fleetwatch.analytics.schemas import (
    AnomalyOptions,
    BudgetForecast,
    BudgetKPIs,
    CostAnomaly,
    CostKPIs,
    DailySummary,
    DashboardTokenStats,
    EntityTokenStats,
    GroupComparison,
    GroupTotals,
    PeriodChange,
    PeriodComparison,
    PeriodStats,
    ProjectedKPIs,
    TodayKPIs,
    TokenAggregation,
    TokenBucket,
    TrendPoint,
)
from fleetwatch.constants import (
    FORECAST_OVERSPEND_RATIO,
    MODEL_EXPECTED_SHARE,
    MODEL_MIN_COST,
    MODEL_SHARE_HIGH,
    MODEL_SHARE_THRESHOLD,
    SEVERITY_ORDER,
    SPIKE_CRITICAL_STDDEV,
    SPIKE_HIGH_STDDEV,
    UNASSIGNED_TICKET,
    UNKNOWN_MODEL,
    AnomalyType,
    GroupBy,
    Severity,
)
from fleetwatch.costing.calculator import format_cost
from fleetwatch.models.activity import Activity
from fleetwatch.timeutil import as_utc, utc_day

type KeyFn = Callable[[Activity], str]

_KEYS: dict[GroupBy, KeyFn] = {
    GroupBy.MODEL: lambda a: a.model_name or UNKNOWN_MODEL,
    GroupBy.AGENT: lambda a: a.agent_id,
    GroupBy.TICKET: lambda a: a.ticket_id or UNASSIGNED_TICKET,
    GroupBy.DAY: lambda a: utc_day(a.created_at),
}


def group_key(dimension: GroupBy | str) -> KeyFn:
    return _KEYS[GroupBy(dimension)]


def _add(bucket: GroupTotals, activity: Activity) -> None:
    bucket.input_tokens += activity.input_tokens or 0
    bucket.output_tokens += activity.output_tokens or 0
    bucket.total_tokens += activity.total_tokens or 0
    bucket.cost += activity.cost
    bucket.activities += 1


def totals(activities: Iterable[Activity], key: str = "total") -> GroupTotals:
    result = GroupTotals(key=key)
    for activity in activities:
        _add(result, activity)
    return result


def group_totals(
    activities: Iterable[Activity], dimension: GroupBy | str
) -> dict[str, GroupTotals]:
    """Partition a slice and sum each part. Every activity lands in one group."""
    key_of = group_key(dimension)
    groups: dict[str, GroupTotals] = {}
    for activity in activities:
        key = key_of(activity)
        bucket = groups.get(key)
        if bucket is None:
            bucket = groups[key] = GroupTotals(key=key)
        _add(bucket, activity)
    return groups


def aggregate_tokens(
    activities: Iterable[Activity], now: datetime
) -> TokenAggregation:
    result = TokenAggregation(last_updated=now)
    buckets: dict[str, dict[str, TokenBucket]] = {
        "agent": defaultdict(TokenBucket),
        "ticket": defaultdict(TokenBucket),
        "model": defaultdict(TokenBucket),
        "day": defaultdict(TokenBucket),
    }
    for activity in activities:
        result.total_activities += 1
        input_tokens = activity.input_tokens or 0
        output_tokens = activity.output_tokens or 0
        if input_tokens == 0 and output_tokens == 0:
            continue
        total = activity.total_tokens or input_tokens + output_tokens
        cost = activity.cost
        result.activities_with_tokens += 1
        result.total_input_tokens += input_tokens
        result.total_output_tokens += output_tokens
        result.total_tokens += total
        result.total_cost += cost

        keys = {
            "agent": activity.agent_id,
            "ticket": activity.ticket_id,
            "model": activity.model_name or UNKNOWN_MODEL,
            "day": utc_day(activity.created_at),
        }
        for dim, key in keys.items():
            if not key:
                continue
            bucket = buckets[dim][key]
            bucket.input += input_tokens
            bucket.output += output_tokens
            bucket.total += total
            bucket.activities += 1
            bucket.cost += cost

    result.by_agent = dict(buckets["agent"])
    result.by_ticket = dict(buckets["ticket"])
    result.by_model = dict(buckets["model"])
    result.by_day = dict(buckets["day"])
    return result


def trend_series(activities: Iterable[Activity]) -> list[TrendPoint]:
    """Per-day totals with the number of distinct agents, oldest first."""
    days: dict[str, GroupTotals] = {}
    agents: dict[str, set[str]] = defaultdict(set)
    for activity in activities:
        day = utc_day(activity.created_at)
        bucket = days.get(day)
        if bucket is None:
            bucket = days[day] = GroupTotals(key=day)
        _add(bucket, activity)
        agents[day].add(activity.agent_id)
    return [
        TrendPoint(
            date=day,
            cost=bucket.cost,
            tokens=bucket.total_tokens,
            activities=bucket.activities,
            agents=len(agents[day]),
        )
        for day, bucket in sorted(days.items())
    ]


def _top(costs: Mapping[str, float]) -> str:
    if not costs:
        return "none"
    return max(costs.items(), key=lambda kv: kv[1])[0]


def daily_summaries(activities: Iterable[Activity]) -> list[DailySummary]:
    days: dict[str, GroupTotals] = {}
    model_costs: dict[str, dict[str, float]] = defaultdict(
        lambda: defaultdict(float)
    )
    agent_costs: dict[str, dict[str, float]] = defaultdict(
        lambda: defaultdict(float)
    )
    for activity in activities:
        day = utc_day(activity.created_at)
        bucket = days.get(day)
        if bucket is None:
            bucket = days[day] = GroupTotals(key=day)
        _add(bucket, activity)
        model_costs[day][activity.model_name or UNKNOWN_MODEL] += activity.cost
        agent_costs[day][activity.agent_id] += activity.cost
    return [
        DailySummary(
            date=day,
            total_cost=bucket.cost,
            total_tokens=bucket.total_tokens,
            input_tokens=bucket.input_tokens,
            output_tokens=bucket.output_tokens,
            activities=bucket.activities,
            unique_agents=len(agent_costs[day]),
            top_model=_top(model_costs[day]),
            top_agent=_top(agent_costs[day]),
        )
        for day, bucket in sorted(days.items())
    ]


def percent_change(current: float, previous: float) -> float:
    """(current - previous) / previous * 100, or 100.0 when previous is 0."""
    if previous == 0:
        return 100.0
    return (current - previous) / previous * 100


def _stats(group: GroupTotals | None) -> PeriodStats:
    if group is None:
        return PeriodStats()
    return PeriodStats(
        cost=group.cost, tokens=group.total_tokens, activities=group.activities
    )


def _change(current: PeriodStats, previous: PeriodStats) -> PeriodChange:
    return PeriodChange(
        cost=percent_change(current.cost, previous.cost),
        tokens=percent_change(current.tokens, previous.tokens),
        activities=percent_change(current.activities, previous.activities),
    )


def compare_periods(
    current: Sequence[Activity],
    previous: Sequence[Activity],
    dimension: GroupBy | str = GroupBy.MODEL,
) -> PeriodComparison:
    """Group both windows the same way and compare group by group."""
    now_groups = group_totals(current, dimension)
    then_groups = group_totals(previous, dimension)
    groups: list[GroupComparison] = []
    for key in now_groups.keys() | then_groups.keys():
        cur = _stats(now_groups.get(key))
        prev = _stats(then_groups.get(key))
        groups.append(
            GroupComparison(
                key=key, current=cur, previous=prev, change=_change(cur, prev)
            )
        )
    groups.sort(key=lambda g: g.current.cost, reverse=True)
    current_total = _stats(totals(current))
    previous_total = _stats(totals(previous))
    return PeriodComparison(
        dimension=str(GroupBy(dimension)),
        groups=groups,
        current_total=current_total,
        previous_total=previous_total,
        total_change=_change(current_total, previous_total),
    )


def forecast_from_values(
    spent: float,
    daily_budget: float,
    days_in_month: int,
    days_elapsed: int,
) -> BudgetForecast:
    """Project month-end spend from the month-to-date total.

    ``days_elapsed`` is the current day of the month; the remaining
    days are those after it.
    """
    days_remaining = max(0, days_in_month - days_elapsed)
    daily_average = spent / days_elapsed if days_elapsed > 0 else 0.0
    projected = spent + daily_average * days_remaining
    monthly_budget = daily_budget * days_in_month
    remaining_budget = max(0.0, monthly_budget - spent)
    pace_budget = daily_budget * days_elapsed
    overspending = (
        pace_budget > 0 and spent / pace_budget > FORECAST_OVERSPEND_RATIO
    )
    return BudgetForecast(
        current_spend=spent,
        daily_budget=daily_budget,
        monthly_budget=monthly_budget,
        days_in_month=days_in_month,
        days_elapsed=days_elapsed,
        days_remaining=days_remaining,
        projected_monthly=projected,
        projected_daily=daily_average,
        remaining_budget=remaining_budget,
        recommended_daily_budget=(
            remaining_budget / days_remaining
            if days_remaining > 0
            else remaining_budget
        ),
        at_risk=projected >= monthly_budget or overspending,
    )


def budget_forecast(
    month_spend: float, daily_budget: float, now: datetime
) -> BudgetForecast:
    now = as_utc(now)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    return forecast_from_values(month_spend, daily_budget, days_in_month, now.day)


def month_start(now: datetime) -> datetime:
    now = as_utc(now)
    return datetime(now.year, now.month, 1, tzinfo=UTC)


def day_start(now: datetime) -> datetime:
    return datetime.combine(as_utc(now).date(), time.min, tzinfo=UTC)


# ── Anomaly detection ────────────────────────────────────


def _spikes(
    daily_costs: dict[str, float], options: AnomalyOptions
) -> list[CostAnomaly]:
    """Flag days far above the other days of the window.

    Each day is compared against the mean and population standard
    deviation of the remaining days, so a single outlier cannot mask
    itself by inflating the baseline. Both the day and its excess over
    that mean must exceed ``min_anomaly_cost``, which keeps a flat
    baseline (zero deviation) from flagging every small uptick.
    """
    found: list[CostAnomaly] = []
    if len(daily_costs) < 2:
        return found
    for day, cost in sorted(daily_costs.items()):
        others = [c for d, c in daily_costs.items() if d != day]
        mean = sum(others) / len(others)
        stddev = math.sqrt(sum((c - mean) ** 2 for c in others) / len(others))
        if cost <= mean + options.spike_threshold * stddev:
            continue
        if cost <= options.min_anomaly_cost:
            continue
        if cost - mean <= options.min_anomaly_cost:
            continue
        if cost > mean + SPIKE_CRITICAL_STDDEV * stddev:
            severity = Severity.CRITICAL
        elif cost > mean + SPIKE_HIGH_STDDEV * stddev:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        found.append(
            CostAnomaly(
                id=f"spike-{day}",
                type=AnomalyType.SPIKE,
                severity=severity,
                description=(
                    f"Cost spike detected: {format_cost(cost)}"
                    f" (expected ~{format_cost(mean)})"
                ),
                observed_value=cost,
                expected_value=mean,
                timestamp=datetime.fromisoformat(day).replace(tzinfo=UTC),
            )
        )
    return found


def _unusual_models(
    model_costs: dict[str, float], total_cost: float, now: datetime
) -> list[CostAnomaly]:
    found: list[CostAnomaly] = []
    if total_cost <= 0:
        return found
    for model, cost in model_costs.items():
        share = cost / total_cost
        if share <= MODEL_SHARE_THRESHOLD or cost <= MODEL_MIN_COST:
            continue
        found.append(
            CostAnomaly(
                id=f"model-{model}",
                type=AnomalyType.UNUSUAL_MODEL,
                severity=(
                    Severity.HIGH if share > MODEL_SHARE_HIGH else Severity.MEDIUM
                ),
                description=f"{model} accounts for {share * 100:.1f}% of costs",
                observed_value=cost,
                expected_value=total_cost * MODEL_EXPECTED_SHARE,
                timestamp=now,
                model_name=model,
            )
        )
    return found


def _budget_threshold(
    total_cost: float,
    start: datetime,
    end: datetime,
    options: AnomalyOptions,
    now: datetime,
) -> CostAnomaly | None:
    window_days = max(
        1, math.ceil((as_utc(end) - as_utc(start)).total_seconds() / 86400)
    )
    period_budget = options.daily_budget * window_days
    ratio = total_cost / period_budget
    if ratio <= options.budget_ratio:
        return None
    if ratio > 1:
        severity = Severity.CRITICAL
    elif ratio > 0.9:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM
    state = "exceeded" if ratio > 1 else "threshold reached"
    return CostAnomaly(
        id=f"budget-{as_utc(now).isoformat()}",
        type=AnomalyType.BUDGET_THRESHOLD,
        severity=severity,
        description=f"Budget {state}: {ratio * 100:.1f}%",
        observed_value=total_cost,
        expected_value=period_budget * options.budget_ratio,
        timestamp=now,
    )


def detect_anomalies(
    activities: Iterable[Activity],
    start: datetime,
    end: datetime,
    options: AnomalyOptions | None = None,
    now: datetime | None = None,
) -> list[CostAnomaly]:
    """Spike, unusual-model and budget findings, most severe first.

    Only priced activities contribute.
    """
    options = options or AnomalyOptions()
    now = now or as_utc(end)
    daily: dict[str, float] = defaultdict(float)
    by_model: dict[str, float] = defaultdict(float)
    for activity in activities:
        if activity.cost_total is None:
            continue
        daily[utc_day(activity.created_at)] += activity.cost_total
        by_model[activity.model_name or UNKNOWN_MODEL] += activity.cost_total
    total_cost = sum(daily.values())

    anomalies = _spikes(daily, options)
    anomalies.extend(_unusual_models(by_model, total_cost, now))
    budget = _budget_threshold(total_cost, start, end, options, now)
    if budget is not None:
        anomalies.append(budget)
    # Stable sort keeps day order within a severity
    anomalies.sort(key=lambda a: SEVERITY_ORDER[a.severity])
    return anomalies


# ── Dashboard reductions ─────────────────────────────────


def cost_kpis(
    today: Sequence[Activity],
    month: Sequence[Activity],
    daily_budget: float,
    now: datetime,
) -> CostKPIs:
    now = as_utc(now)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    today_totals = totals(today)
    month_cost = totals(month).cost
    monthly_budget = daily_budget * days_in_month
    used_pct = month_cost / monthly_budget * 100 if monthly_budget > 0 else 0.0
    daily_average = month_cost / now.day
    return CostKPIs(
        today=TodayKPIs(
            cost=today_totals.cost,
            tokens=today_totals.total_tokens,
            activities=today_totals.activities,
            agents=len({a.agent_id for a in today}),
        ),
        budget=BudgetKPIs(
            used=month_cost,
            total=monthly_budget,
            percentage=min(100.0, used_pct),
        ),
        projected=ProjectedKPIs(
            monthly=daily_average * days_in_month,
            daily=daily_average,
        ),
    )


def dashboard_token_stats(
    everything: Iterable[Activity], today: Iterable[Activity]
) -> DashboardTokenStats:
    overall = totals(everything)
    now = totals(today)
    return DashboardTokenStats(
        total_input_tokens=overall.input_tokens,
        total_output_tokens=overall.output_tokens,
        total_tokens=overall.input_tokens + overall.output_tokens,
        total_cost=overall.cost,
        today_input=now.input_tokens,
        today_output=now.output_tokens,
        today_total=now.input_tokens + now.output_tokens,
        today_cost=now.cost,
    )


def entity_token_stats(
    activities: Sequence[Activity], *, with_agents: bool = False
) -> EntityTokenStats | None:
    """Totals for one agent's or ticket's activities; None when empty."""
    if not activities:
        return None
    summed = totals(activities)
    agents: list[str] = []
    if with_agents:
        for activity in activities:
            if activity.agent_id and activity.agent_id not in agents:
                agents.append(activity.agent_id)
    return EntityTokenStats(
        total_input=summed.input_tokens,
        total_output=summed.output_tokens,
        total=summed.total_tokens,
        activities=summed.activities,
        cost=summed.cost,
        average_per_activity=round(summed.total_tokens / summed.activities),
        agents=agents,
    )


def export_csv(rows: Sequence[Mapping[str, Any]]) -> str:
    """Render rows as CSV, columns taken from the first row."""
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer,
        fieldnames=list(rows[0].keys()),
        extrasaction="ignore",
        lineterminator="\n",
    )
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
