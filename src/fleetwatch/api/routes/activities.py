"""Activity ledger routes: record, follow up, list, trace."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from fleetwatch.api.dependencies import get_ledger
from fleetwatch.api.schemas import APIResponse
from fleetwatch.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from fleetwatch.repositories.protocols import ActivityFilter
from fleetwatch.services.activity_ledger import (
    ActivityDraft,
    ActivityLedger,
    ActivityPatch,
)

router = APIRouter(prefix="/api/activities", tags=["activities"])


@router.post("")
async def record_activity(
    body: ActivityDraft,
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    """Append one activity; tokens, cost and parent are derived."""
    activity = await ledger.append(body)
    return APIResponse(success=True, data=activity.to_dict())


@router.get("")
async def list_activities(
    agent_id: str | None = None,
    ticket_id: str | None = None,
    activity_type: str | None = None,
    trace_id: str | None = None,
    model_name: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    result = await ledger.list(
        ActivityFilter(
            agent_id=agent_id,
            ticket_id=ticket_id,
            activity_type=activity_type,
            trace_id=trace_id,
            model_name=model_name,
            start=start,
            end=end,
        ),
        page=page,
        limit=limit,
    )
    return APIResponse(
        success=True,
        data=[a.to_dict() for a in result.items],
        metadata={
            "total": result.total,
            "page": result.page,
            "limit": result.limit,
            "pages": result.pages,
        },
    )


@router.get("/trace/{trace_id}")
async def get_trace(
    trace_id: str,
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    """Every activity in a trace, oldest first."""
    activities = await ledger.trace(trace_id)
    return APIResponse(
        success=True,
        data=[a.to_dict() for a in activities],
        metadata={"count": len(activities)},
    )


@router.get("/{activity_id}")
async def get_activity(
    activity_id: str,
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    activity = await ledger.get(activity_id)
    children = await ledger.children(activity_id)
    data = activity.to_dict()
    data["children"] = [c.id for c in children]
    return APIResponse(success=True, data=data)


@router.put("/{activity_id}")
async def update_activity(
    activity_id: str,
    body: ActivityPatch,
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    activity = await ledger.update(activity_id, body)
    return APIResponse(success=True, data=activity.to_dict())


@router.delete("/{activity_id}")
async def delete_activity(
    activity_id: str,
    ledger: ActivityLedger = Depends(get_ledger),
) -> APIResponse:
    await ledger.delete(activity_id)
    return APIResponse(success=True, data={"deleted": activity_id})
