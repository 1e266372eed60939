"""FastAPI dependency injection for engine components."""

from __future__ import annotations

from fastapi import Request

from fleetwatch.analytics.engine import AnalyticsEngine
from fleetwatch.api.app_state import AppState
from fleetwatch.services.activity_ledger import ActivityLedger
from fleetwatch.services.heartbeat_reconciler import HeartbeatReconciler
from fleetwatch.services.status_engine import AgentStatusEngine
from fleetwatch.services.ticket_workflow import TicketService


def get_state(request: Request) -> AppState:
    return request.app.state.typed  # type: ignore[no-any-return]


def get_ledger(request: Request) -> ActivityLedger:
    return get_state(request).ledger


def get_status_engine(request: Request) -> AgentStatusEngine:
    return get_state(request).status_engine


def get_reconciler(request: Request) -> HeartbeatReconciler:
    return get_state(request).reconciler


def get_analytics(request: Request) -> AnalyticsEngine:
    return get_state(request).analytics


def get_ticket_service(request: Request) -> TicketService:
    return get_state(request).tickets
