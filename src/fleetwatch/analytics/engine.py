"""Analytics engine: fetch a window from the ledger, reduce it.

Every call rescans the activities it needs. Reads take no locks, so a
concurrent append may or may not be included in a result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from fleetwatch.analytics import reductions
from fleetwatch.analytics.schemas import (
    AnomalyOptions,
    BudgetForecast,
    CostAnomaly,
    CostKPIs,
    DailySummary,
    DashboardTokenStats,
    EntityTokenStats,
    GroupTotals,
    PeriodComparison,
    TokenAggregation,
    TrendPoint,
)
from fleetwatch.config import Settings
from fleetwatch.constants import DEFAULT_DAILY_BUDGET, GroupBy
from fleetwatch.errors import PersistenceError
from fleetwatch.models.activity import Activity
from fleetwatch.repositories.protocols import ActivityFilter, ActivityRepository
from fleetwatch.timeutil import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    def __init__(
        self,
        activity_repo: ActivityRepository,
        clock: Clock = utc_now,
        settings: Settings | None = None,
    ) -> None:
        self._activities = activity_repo
        self._clock = clock
        self._settings = settings

    @property
    def daily_budget(self) -> float:
        if self._settings is None:
            return DEFAULT_DAILY_BUDGET
        return self._settings.daily_budget

    def anomaly_options(self, **overrides: Any) -> AnomalyOptions:
        defaults: dict[str, Any] = {"daily_budget": self.daily_budget}
        if self._settings is not None:
            defaults.update(
                spike_threshold=self._settings.anomaly_spike_threshold,
                min_anomaly_cost=self._settings.anomaly_min_cost,
                budget_ratio=self._settings.anomaly_budget_ratio,
            )
        defaults.update({k: v for k, v in overrides.items() if v is not None})
        return AnomalyOptions(**defaults)

    async def window(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        **filters: Any,
    ) -> list[Activity]:
        try:
            return await self._activities.find(
                ActivityFilter(start=start, end=end, **filters)
            )
        except Exception as exc:
            raise PersistenceError("read activities", str(exc)) from exc

    async def totals(
        self,
        start: datetime,
        end: datetime,
        group_by: GroupBy | str | None = None,
    ) -> GroupTotals | dict[str, GroupTotals]:
        activities = await self.window(start, end)
        if group_by is None:
            return reductions.totals(activities)
        return reductions.group_totals(activities, group_by)

    async def token_aggregation(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> TokenAggregation:
        activities = await self.window(start, end)
        return reductions.aggregate_tokens(activities, self._clock())

    async def trends(self, days: int = 30) -> list[TrendPoint]:
        end = self._clock()
        activities = await self.window(end - timedelta(days=days), end)
        return reductions.trend_series(activities)

    async def daily_summaries(
        self, start: datetime, end: datetime
    ) -> list[DailySummary]:
        return reductions.daily_summaries(await self.window(start, end))

    async def compare(
        self,
        current_start: datetime,
        current_end: datetime,
        previous_start: datetime | None = None,
        previous_end: datetime | None = None,
        dimension: GroupBy | str = GroupBy.MODEL,
    ) -> PeriodComparison:
        """Compare two windows; the previous one defaults to the
        equal-length window right before the current one."""
        if previous_start is None or previous_end is None:
            length = current_end - current_start
            previous_end = current_start
            previous_start = current_start - length
        current = await self.window(current_start, current_end)
        previous = await self.window(previous_start, previous_end)
        return reductions.compare_periods(current, previous, dimension)

    async def forecast(
        self, daily_budget: float | None = None
    ) -> BudgetForecast:
        now = self._clock()
        month = await self.window(reductions.month_start(now), now)
        spent = reductions.totals(month).cost
        return reductions.budget_forecast(
            spent, daily_budget or self.daily_budget, now
        )

    async def anomalies(
        self,
        start: datetime,
        end: datetime,
        options: AnomalyOptions | None = None,
    ) -> list[CostAnomaly]:
        activities = await self.window(start, end)
        found = reductions.detect_anomalies(
            activities,
            start,
            end,
            options or self.anomaly_options(),
            now=self._clock(),
        )
        if found:
            logger.info(
                "event=cost_anomalies_detected count=%d top=%s",
                len(found),
                found[0].severity,
            )
        return found

    async def kpis(self) -> CostKPIs:
        now = self._clock()
        month = await self.window(reductions.month_start(now), now)
        today_start = reductions.day_start(now)
        today = [a for a in month if as_utc(a.created_at) >= today_start]
        return reductions.cost_kpis(today, month, self.daily_budget, now)

    async def dashboard_token_stats(self) -> DashboardTokenStats:
        now = self._clock()
        everything = await self.window()
        today = await self.window(reductions.day_start(now), now)
        return reductions.dashboard_token_stats(everything, today)

    async def agent_token_stats(
        self, agent_id: str
    ) -> EntityTokenStats | None:
        return reductions.entity_token_stats(
            await self.window(agent_id=agent_id)
        )

    async def ticket_token_stats(
        self, ticket_id: str
    ) -> EntityTokenStats | None:
        return reductions.entity_token_stats(
            await self.window(ticket_id=ticket_id), with_agents=True
        )

    async def report(self, days: int = 30) -> dict[str, Any]:
        """Trend, anomaly and forecast bundle for the CLI report."""
        end = self._clock()
        start = end - timedelta(days=days)
        activities = await self.window(start, end)
        return {
            "window": {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "days": days,
            },
            "totals": reductions.totals(activities).model_dump(),
            "trends": [
                p.model_dump() for p in reductions.trend_series(activities)
            ],
            "anomalies": [
                a.model_dump(mode="json")
                for a in reductions.detect_anomalies(
                    activities, start, end, self.anomaly_options(), now=end
                )
            ],
            "forecast": (await self.forecast()).model_dump(),
        }
