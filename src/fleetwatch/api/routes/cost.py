"""Cost and token analytics routes.

Every endpoint recomputes from the activity ledger; windows default to
the last 30 days ending now.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from fleetwatch.analytics import reductions
from fleetwatch.analytics.engine import AnalyticsEngine
from fleetwatch.api.dependencies import get_analytics, get_state
from fleetwatch.api.app_state import AppState
from fleetwatch.api.schemas import APIResponse
from fleetwatch.constants import GroupBy
from fleetwatch.errors import AgentNotFoundError, TicketNotFoundError

router = APIRouter(prefix="/api/cost", tags=["cost"])

DEFAULT_WINDOW_DAYS = 30


def _window(
    state: AppState, start: datetime | None, end: datetime | None
) -> tuple[datetime, datetime]:
    end = end or state.clock()
    return start or end - timedelta(days=DEFAULT_WINDOW_DAYS), end


@router.get("/kpis")
async def kpis(
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    """Today, month-to-date and projected spend against the budget."""
    return APIResponse(success=True, data=(await analytics.kpis()).model_dump())


@router.get("/trends", response_model=None)
async def trends(
    days: int = Query(default=DEFAULT_WINDOW_DAYS, ge=1, le=366),
    fmt: str = Query(default="json", alias="format", pattern="^(json|csv)$"),
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse | PlainTextResponse:
    points = [p.model_dump() for p in await analytics.trends(days)]
    if fmt == "csv":
        return PlainTextResponse(
            reductions.export_csv(points), media_type="text/csv"
        )
    return APIResponse(success=True, data=points, metadata={"days": days})


@router.get("/totals")
async def totals(
    start: datetime | None = None,
    end: datetime | None = None,
    group_by: GroupBy | None = None,
    state: AppState = Depends(get_state),
) -> APIResponse:
    start, end = _window(state, start, end)
    result = await state.analytics.totals(start, end, group_by)
    if isinstance(result, dict):
        data = {k: v.model_dump() for k, v in result.items()}
    else:
        data = result.model_dump()
    return APIResponse(
        success=True,
        data=data,
        metadata={
            "start": start.isoformat(),
            "end": end.isoformat(),
            "group_by": group_by,
        },
    )


@router.get("/daily")
async def daily(
    start: datetime | None = None,
    end: datetime | None = None,
    state: AppState = Depends(get_state),
) -> APIResponse:
    start, end = _window(state, start, end)
    summaries = await state.analytics.daily_summaries(start, end)
    return APIResponse(
        success=True, data=[s.model_dump() for s in summaries]
    )


@router.get("/comparison")
async def comparison(
    current_start: datetime,
    current_end: datetime,
    previous_start: datetime | None = None,
    previous_end: datetime | None = None,
    dimension: GroupBy = GroupBy.MODEL,
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    result = await analytics.compare(
        current_start, current_end, previous_start, previous_end, dimension
    )
    return APIResponse(success=True, data=result.model_dump())


@router.get("/forecast")
async def forecast(
    daily_budget: float | None = Query(default=None, gt=0),
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    result = await analytics.forecast(daily_budget)
    return APIResponse(success=True, data=result.model_dump())


@router.get("/anomalies")
async def anomalies(
    start: datetime | None = None,
    end: datetime | None = None,
    spike_threshold: float | None = Query(default=None, gt=0),
    min_anomaly_cost: float | None = Query(default=None, ge=0),
    state: AppState = Depends(get_state),
) -> APIResponse:
    start, end = _window(state, start, end)
    options = state.analytics.anomaly_options(
        spike_threshold=spike_threshold, min_anomaly_cost=min_anomaly_cost
    )
    found = await state.analytics.anomalies(start, end, options)
    return APIResponse(
        success=True,
        data=[a.model_dump(mode="json") for a in found],
        metadata={"count": len(found)},
    )


# ── Token statistics ─────────────────────────────────────


@router.get("/tokens")
async def token_dashboard(
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    stats = await analytics.dashboard_token_stats()
    return APIResponse(success=True, data=stats.model_dump())


@router.get("/tokens/aggregate")
async def token_aggregate(
    start: datetime | None = None,
    end: datetime | None = None,
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    result = await analytics.token_aggregation(start, end)
    return APIResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/tokens/agents/{agent_id}")
async def agent_tokens(
    agent_id: str,
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    stats = await analytics.agent_token_stats(agent_id)
    if stats is None:
        raise AgentNotFoundError(agent_id)
    return APIResponse(success=True, data=stats.model_dump())


@router.get("/tokens/tickets/{ticket_id}")
async def ticket_tokens(
    ticket_id: str,
    analytics: AnalyticsEngine = Depends(get_analytics),
) -> APIResponse:
    stats = await analytics.ticket_token_stats(ticket_id)
    if stats is None:
        raise TicketNotFoundError(ticket_id)
    return APIResponse(success=True, data=stats.model_dump())
