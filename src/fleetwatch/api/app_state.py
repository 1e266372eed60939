"""Typed application state and component wiring."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.analytics.engine import AnalyticsEngine
from fleetwatch.config import Settings
from fleetwatch.costing.tokens import TokenEstimator
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.handlers.snapshot import SnapshotHandler
from fleetwatch.repositories.activity_repo import SqlActivityRepository
from fleetwatch.repositories.agent_repo import SqlAgentRepository
from fleetwatch.repositories.heartbeat_repo import (
    SqlAgentHistoryRepository,
    SqlHeartbeatRepository,
)
from fleetwatch.repositories.protocols import (
    ActivityRepository,
    AgentHistoryRepository,
    AgentRepository,
    HeartbeatRepository,
    TicketRepository,
)
from fleetwatch.repositories.ticket_repo import SqlTicketRepository
from fleetwatch.services.activity_ledger import ActivityLedger
from fleetwatch.services.heartbeat_reconciler import HeartbeatReconciler
from fleetwatch.services.status_engine import AgentStatusEngine
from fleetwatch.services.ticket_workflow import TicketService, TicketWorkflow
from fleetwatch.services.trace_chain import TraceChain
from fleetwatch.timeutil import Clock, utc_now


@dataclass
class Repos:
    """All repository protocols as one injectable unit."""

    activity: ActivityRepository
    agent: AgentRepository
    ticket: TicketRepository
    heartbeat: HeartbeatRepository
    history: AgentHistoryRepository


def sql_repos(session_factory: async_sessionmaker[AsyncSession]) -> Repos:
    return Repos(
        activity=SqlActivityRepository(session_factory),
        agent=SqlAgentRepository(session_factory),
        ticket=SqlTicketRepository(session_factory),
        heartbeat=SqlHeartbeatRepository(session_factory),
        history=SqlAgentHistoryRepository(session_factory),
    )


@dataclass
class AppState:
    """Typed container for app.state attributes."""

    settings: Settings
    repos: Repos
    dispatcher: TelemetryDispatcher
    status_engine: AgentStatusEngine
    ledger: ActivityLedger
    reconciler: HeartbeatReconciler
    analytics: AnalyticsEngine
    tickets: TicketService
    session_factory: async_sessionmaker[AsyncSession] | None = None
    clock: Clock = utc_now

    @property
    def snapshot(self) -> SnapshotHandler | None:
        handler = self.dispatcher.get("snapshot")
        return handler if isinstance(handler, SnapshotHandler) else None


def build_state(
    settings: Settings,
    repos: Repos,
    dispatcher: TelemetryDispatcher,
    *,
    clock: Clock = utc_now,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AppState:
    """Wire every engine component onto one set of repositories."""
    status_engine = AgentStatusEngine(
        repos.agent,
        repos.history,
        repos.heartbeat,
        dispatcher=dispatcher,
        clock=clock,
        history_limit=settings.status_history_limit,
        serialize=settings.serialize_agent_updates,
    )
    ledger = ActivityLedger(
        repos.activity,
        repos.ticket,
        status_engine,
        TraceChain(settings.trace_chain_max_traces),
        TokenEstimator(
            settings.tokenizer_model,
            exact=settings.exact_token_counting,
        ),
        dispatcher=dispatcher,
        clock=clock,
    )
    reconciler = HeartbeatReconciler(
        repos.agent,
        repos.history,
        repos.heartbeat,
        ledger=ledger,
        dispatcher=dispatcher,
        status_engine=status_engine,
        clock=clock,
        interval=settings.heartbeat_interval_seconds,
        offline_threshold=settings.offline_threshold_seconds,
        history_limit=settings.status_history_limit,
        retention=timedelta(hours=settings.heartbeat_retention_hours),
    )
    return AppState(
        settings=settings,
        repos=repos,
        dispatcher=dispatcher,
        status_engine=status_engine,
        ledger=ledger,
        reconciler=reconciler,
        analytics=AnalyticsEngine(repos.activity, clock, settings),
        tickets=TicketService(
            repos.ticket,
            TicketWorkflow(strict=settings.strict_ticket_workflow),
            clock,
        ),
        session_factory=session_factory,
        clock=clock,
    )
