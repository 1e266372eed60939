"""Shared test fixtures: fixed clock, fake repos, file-backed SQLite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fleetwatch.api.app_state import AppState, Repos, build_state
from fleetwatch.config import Settings
from fleetwatch.costing.tokens import TokenEstimator
from fleetwatch.models.base import Base
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.handlers.snapshot import SnapshotHandler
from fleetwatch.repositories.fakes import (
    FakeActivityRepository,
    FakeAgentHistoryRepository,
    FakeAgentRepository,
    FakeHeartbeatRepository,
    FakeTicketRepository,
)
from fleetwatch.services.activity_ledger import ActivityLedger
from fleetwatch.services.status_engine import AgentStatusEngine
from fleetwatch.services.trace_chain import TraceChain

START = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class FixedClock:
    """Manually advanced clock for deterministic time arithmetic."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_repos() -> Repos:
    return Repos(
        activity=FakeActivityRepository(),
        agent=FakeAgentRepository(),
        ticket=FakeTicketRepository(),
        heartbeat=FakeHeartbeatRepository(),
        history=FakeAgentHistoryRepository(),
    )


def make_settings(**overrides: object) -> Settings:
    """Settings isolated from the environment and any .env file."""
    values: dict[str, object] = {
        "database_url": "sqlite:///:memory:",
        "exact_token_counting": False,
        "trace_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def repos() -> Repos:
    return make_repos()


@pytest.fixture
def dispatcher() -> TelemetryDispatcher:
    d = TelemetryDispatcher()
    d.register(SnapshotHandler())
    return d


@pytest.fixture
def status_engine(
    repos: Repos, clock: FixedClock, dispatcher: TelemetryDispatcher
) -> AgentStatusEngine:
    return AgentStatusEngine(
        repos.agent,
        repos.history,
        repos.heartbeat,
        dispatcher=dispatcher,
        clock=clock,
    )


@pytest.fixture
def ledger(
    repos: Repos,
    clock: FixedClock,
    status_engine: AgentStatusEngine,
    dispatcher: TelemetryDispatcher,
) -> ActivityLedger:
    return ActivityLedger(
        repos.activity,
        repos.ticket,
        status_engine,
        TraceChain(),
        TokenEstimator(exact=False),
        dispatcher=dispatcher,
        clock=clock,
    )


@pytest.fixture
def app_state(
    repos: Repos, clock: FixedClock, dispatcher: TelemetryDispatcher
) -> AppState:
    return build_state(make_settings(), repos, dispatcher, clock=clock)


@pytest.fixture
async def client(app_state: AppState) -> AsyncIterator[AsyncClient]:
    """API client over fake repos; the lifespan is not run."""
    from fleetwatch.main import app

    app.state.settings = app_state.settings
    app.state.typed = app_state
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test"
    ) as c:
        yield c


@pytest.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Per-test file database; repositories open their own sessions."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fleetwatch.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
