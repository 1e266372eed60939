"""Tests for offline detection, effective status and fleet health."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwatch.api.app_state import Repos
from fleetwatch.constants import ActivityType, AgentStatus
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.repositories.agent_repo import SqlAgentRepository
from fleetwatch.repositories.heartbeat_repo import (
    SqlAgentHistoryRepository,
    SqlHeartbeatRepository,
)
from fleetwatch.repositories.protocols import ActivityFilter
from fleetwatch.services.activity_ledger import ActivityLedger
from fleetwatch.services.heartbeat_reconciler import (
    OFFLINE_REASON,
    HeartbeatReconciler,
    effective_status,
    is_online,
)
from fleetwatch.services.status_engine import (
    AgentStatusEngine,
    HeartbeatReport,
    new_agent,
)
from fleetwatch.timeutil import as_utc


@pytest.fixture
def reconciler(
    repos: Repos, clock, ledger: ActivityLedger, dispatcher
) -> HeartbeatReconciler:
    return HeartbeatReconciler(
        repos.agent,
        repos.history,
        repos.heartbeat,
        ledger=ledger,
        dispatcher=dispatcher,
        clock=clock,
        interval=30,
        offline_threshold=60,
    )


class TestEffectiveStatus:
    def test_recent_heartbeat_keeps_stored_status(self, clock) -> None:
        agent = new_agent("a1", clock(), status=AgentStatus.WORKING)
        now = clock.advance(seconds=60)
        assert is_online(agent, now, 60)
        assert effective_status(agent, now, 60) == AgentStatus.WORKING

    def test_silent_agent_reads_offline(self, clock) -> None:
        agent = new_agent("a1", clock(), status=AgentStatus.WORKING)
        now = clock.advance(seconds=61)
        assert not is_online(agent, now, 60)
        assert effective_status(agent, now, 60) == AgentStatus.OFFLINE

    def test_live_agent_stored_offline_reads_idle(self, clock) -> None:
        agent = new_agent("a1", clock(), status=AgentStatus.OFFLINE)
        assert effective_status(agent, clock(), 60) == AgentStatus.IDLE


class TestSweep:
    async def test_stale_agent_forced_offline(
        self,
        reconciler: HeartbeatReconciler,
        status_engine: AgentStatusEngine,
        repos: Repos,
        clock,
    ) -> None:
        await status_engine.register("a1")
        await status_engine.on_activity("a1", "tool_call")
        clock.advance(seconds=61)

        forced = await reconciler.sweep()

        assert forced == ["a1"]
        agent = await status_engine.get("a1")
        assert agent.status == AgentStatus.OFFLINE
        assert agent.status_history[-1]["reason"] == OFFLINE_REASON
        audit = repos.history.all  # type: ignore[attr-defined]
        assert audit[-1].meta["source"] == "reconciler"
        activities = await repos.activity.find(
            ActivityFilter(activity_type=ActivityType.STATUS_CHANGE)
        )
        assert len(activities) == 1
        assert activities[0].meta["previousStatus"] == "WORKING"

    async def test_fresh_and_offline_agents_untouched(
        self,
        reconciler: HeartbeatReconciler,
        status_engine: AgentStatusEngine,
        clock,
    ) -> None:
        await status_engine.register("old")
        clock.advance(seconds=61)
        await reconciler.sweep()
        await status_engine.register("fresh")
        clock.advance(seconds=30)

        assert await reconciler.sweep() == []
        assert (await status_engine.get("fresh")).status == AgentStatus.IDLE

    async def test_heartbeat_recovers_offline_agent(
        self,
        reconciler: HeartbeatReconciler,
        status_engine: AgentStatusEngine,
        clock,
    ) -> None:
        await status_engine.register("a1")
        clock.advance(seconds=120)
        await reconciler.sweep()
        agent = await status_engine.on_heartbeat(
            HeartbeatReport(agent_id="a1", status="IDLE")
        )
        assert agent.status == AgentStatus.IDLE
        assert effective_status(agent, clock(), 60) == AgentStatus.IDLE

    async def test_one_failing_agent_does_not_stop_sweep(
        self, repos: Repos, clock
    ) -> None:
        class FlakyHistory:
            async def add(self, entry):  # type: ignore[no-untyped-def]
                if entry.agent_id == "bad":
                    raise RuntimeError("write failed")
                return entry

        for agent_id in ("bad", "good"):
            await repos.agent.add(new_agent(agent_id, clock()))
        clock.advance(seconds=90)
        reconciler = HeartbeatReconciler(
            repos.agent,
            FlakyHistory(),  # type: ignore[arg-type]
            clock=clock,
        )
        assert await reconciler.sweep() == ["good"]

    async def test_failed_offline_activity_still_counts_as_forced(
        self,
        repos: Repos,
        status_engine: AgentStatusEngine,
        clock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class BrokenLedger:
            async def append(self, draft):  # type: ignore[no-untyped-def]
                raise RuntimeError("activity table locked")

        await status_engine.register("a1")
        clock.advance(seconds=90)
        reconciler = HeartbeatReconciler(
            repos.agent,
            repos.history,
            ledger=BrokenLedger(),  # type: ignore[arg-type]
            clock=clock,
        )

        with caplog.at_level(logging.WARNING):
            forced = await reconciler.sweep()

        assert forced == ["a1"]
        assert (await status_engine.get("a1")).status == AgentStatus.OFFLINE
        assert "event=offline_activity_failed" in caplog.text
        assert "event=reconcile_agent_failed" not in caplog.text

    def test_rejects_non_positive_timing(self, repos: Repos) -> None:
        with pytest.raises(ValueError):
            HeartbeatReconciler(repos.agent, repos.history, interval=0)
        with pytest.raises(ValueError):
            HeartbeatReconciler(
                repos.agent, repos.history, offline_threshold=-1
            )


class TestBackgroundLoop:
    async def test_start_and_stop(self, repos: Repos) -> None:
        reconciler = HeartbeatReconciler(
            repos.agent, repos.history, interval=0.01
        )
        reconciler.start()
        assert reconciler.running
        await asyncio.sleep(0.03)
        await reconciler.stop()
        assert not reconciler.running
        # Stopping twice is harmless
        await reconciler.stop()


class TestSystemHealth:
    async def test_scores_online_ratio_and_errors(
        self,
        reconciler: HeartbeatReconciler,
        repos: Repos,
        clock,
    ) -> None:
        await repos.agent.add(new_agent("stale", clock()))
        clock.advance(seconds=120)
        await repos.agent.add(new_agent("live", clock()))
        for health in (
            {"status": "healthy", "metrics": {"responseTime": 100}},
            {"status": "unhealthy", "metrics": {"responseTime": 300}},
        ):
            await repos.heartbeat.add(
                Heartbeat(
                    agent_id="live",
                    status="IDLE",
                    health=health,
                    meta={},
                    created_at=clock(),
                )
            )

        health = await reconciler.system_health()

        assert health.total_agents == 2
        assert health.online_agents == 1
        assert health.offline_agents == 1
        assert health.error_rate == pytest.approx(50.0)
        assert health.average_response_time == pytest.approx(200.0)
        # 50% online, minus half the error rate
        assert health.health_score == 25

    async def test_empty_fleet_is_healthy(
        self, reconciler: HeartbeatReconciler
    ) -> None:
        health = await reconciler.system_health()
        assert health.health_score == 100
        assert health.to_dict()["total_agents"] == 0

    async def test_requires_heartbeat_repo(self, repos: Repos) -> None:
        reconciler = HeartbeatReconciler(repos.agent, repos.history)
        with pytest.raises(RuntimeError):
            await reconciler.system_health()


async def test_cleanup_old_heartbeats(
    reconciler: HeartbeatReconciler, repos: Repos, clock
) -> None:
    await repos.heartbeat.add(
        Heartbeat(agent_id="a1", status="IDLE", created_at=clock())
    )
    clock.advance(hours=25)
    await repos.heartbeat.add(
        Heartbeat(agent_id="a1", status="IDLE", created_at=clock())
    )
    removed = await reconciler.cleanup_old_heartbeats(timedelta(hours=24))
    assert removed == 1
    assert len(repos.heartbeat.all) == 1  # type: ignore[attr-defined]


class TestHeartbeatDuringSweep:
    """A heartbeat that lands between ``find_stale`` and the write wins."""

    @pytest.fixture
    def sql_engine(
        self, session_factory: async_sessionmaker[AsyncSession], clock
    ) -> AgentStatusEngine:
        return AgentStatusEngine(
            SqlAgentRepository(session_factory),
            SqlAgentHistoryRepository(session_factory),
            SqlHeartbeatRepository(session_factory),
            clock=clock,
            serialize=True,
        )

    @pytest.fixture
    def sql_reconciler(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sql_engine: AgentStatusEngine,
        clock,
    ) -> HeartbeatReconciler:
        return HeartbeatReconciler(
            SqlAgentRepository(session_factory),
            SqlAgentHistoryRepository(session_factory),
            status_engine=sql_engine,
            clock=clock,
            offline_threshold=60,
        )

    async def test_fresh_heartbeat_is_not_rolled_back(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sql_engine: AgentStatusEngine,
        sql_reconciler: HeartbeatReconciler,
        clock,
    ) -> None:
        agents = SqlAgentRepository(session_factory)
        await sql_engine.register("a1")
        now = clock.advance(seconds=120)
        cutoff = now - timedelta(seconds=60)
        stale = await agents.find_stale(cutoff)
        assert [a.id for a in stale] == ["a1"]

        await sql_engine.on_heartbeat(
            HeartbeatReport(agent_id="a1", status="WORKING")
        )
        changed = await sql_reconciler._force_offline(
            stale[0].id, cutoff, now
        )

        assert changed is False
        stored = await agents.get("a1")
        assert stored is not None
        assert stored.status == AgentStatus.WORKING
        assert as_utc(stored.last_heartbeat) == now
        assert effective_status(stored, now, 60) == AgentStatus.WORKING
        assert await sql_reconciler.sweep() == []

    async def test_sweep_waits_for_agent_lock(
        self,
        sql_engine: AgentStatusEngine,
        sql_reconciler: HeartbeatReconciler,
        clock,
    ) -> None:
        await sql_engine.register("a1")
        clock.advance(seconds=120)

        async with sql_engine.hold("a1"):
            task = asyncio.create_task(sql_reconciler.sweep())
            for _ in range(20):
                await asyncio.sleep(0.01)
            assert not task.done()

        assert await task == ["a1"]
        assert (await sql_engine.get("a1")).status == AgentStatus.OFFLINE
