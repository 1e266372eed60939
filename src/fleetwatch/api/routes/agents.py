"""Agent registration, heartbeat, status and fleet health routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from fleetwatch.api.app_state import AppState
from fleetwatch.api.dependencies import (
    get_reconciler,
    get_state,
    get_status_engine,
)
from fleetwatch.api.schemas import (
    AgentRegistration,
    APIResponse,
    HeartbeatBody,
)
from fleetwatch.models.agent import Agent
from fleetwatch.services.heartbeat_reconciler import (
    HeartbeatReconciler,
    effective_status,
    is_online,
    seconds_since_heartbeat,
)
from fleetwatch.services.status_engine import (
    AgentStatusEngine,
    HeartbeatReport,
)

router = APIRouter(prefix="/api", tags=["agents"])


def _with_liveness(
    agent: Agent, state: AppState
) -> dict[str, Any]:
    now = state.clock()
    threshold = state.reconciler.offline_threshold
    data = agent.to_dict()
    data["effective_status"] = str(effective_status(agent, now, threshold))
    data["is_online"] = is_online(agent, now, threshold)
    data["seconds_since_heartbeat"] = round(
        seconds_since_heartbeat(agent, now), 3
    )
    return data


@router.post("/agents", status_code=201)
async def register_agent(
    body: AgentRegistration,
    state: AppState = Depends(get_state),
) -> APIResponse:
    """Create an agent as IDLE, or refresh name, type and config."""
    agent = await state.status_engine.register(
        body.id,
        body.name,
        body.type,
        tokens_available=body.tokens_available,
        config=body.config,
        metadata=body.metadata,
    )
    return APIResponse(success=True, data=_with_liveness(agent, state))


@router.post("/agents/{agent_id}/heartbeat")
async def heartbeat(
    agent_id: str,
    body: HeartbeatBody,
    engine: AgentStatusEngine = Depends(get_status_engine),
) -> APIResponse:
    """Record a liveness report; unknown agents are registered."""
    agent = await engine.on_heartbeat(
        HeartbeatReport(agent_id=agent_id, **body.model_dump())
    )
    return APIResponse(
        success=True,
        data={
            "agent_id": agent.id,
            "status": agent.status,
            "last_heartbeat": agent.to_dict()["last_heartbeat"],
        },
    )


@router.get("/agents")
async def list_agents(
    state: AppState = Depends(get_state),
) -> APIResponse:
    agents = await state.repos.agent.list_all()
    return APIResponse(
        success=True,
        data=[_with_liveness(a, state) for a in agents],
        metadata={"count": len(agents)},
    )


@router.get("/agents/{agent_id}/status")
async def agent_status(
    agent_id: str,
    history_limit: int = Query(default=20, ge=1, le=200),
    state: AppState = Depends(get_state),
) -> APIResponse:
    """Stored and effective status plus recent change records."""
    agent = await state.status_engine.get(agent_id)
    changes = await state.repos.history.list_for_agent(
        agent_id, limit=history_limit
    )
    data = _with_liveness(agent, state)
    data["changes"] = [c.to_dict() for c in changes]
    return APIResponse(success=True, data=data)


@router.get("/monitor/health")
async def fleet_health(
    reconciler: HeartbeatReconciler = Depends(get_reconciler),
) -> APIResponse:
    health = await reconciler.system_health()
    return APIResponse(success=True, data=health.to_dict())
