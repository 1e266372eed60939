"""Heartbeat reconciler -- forces silent agents OFFLINE.

The stored status and the displayed status are two views. ``sweep``
persists OFFLINE for agents that stopped heartbeating; readers call
``effective_status``, which is recomputed from ``last_heartbeat`` on
every read and can run ahead of (or recover before) the next sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from fleetwatch.constants import (
    HEALTH_WINDOW_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    HEARTBEAT_RETENTION_HOURS,
    OFFLINE_THRESHOLD_SECONDS,
    STATUS_HISTORY_LIMIT,
    ActivityType,
    AgentChangeType,
    AgentStatus,
)
from fleetwatch.models.agent import Agent
from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.emitters import emit_agent_offline
from fleetwatch.repositories.protocols import (
    AgentHistoryRepository,
    AgentRepository,
    HeartbeatRepository,
)
from fleetwatch.services.activity_ledger import ActivityDraft, ActivityLedger
from fleetwatch.services.status_engine import (
    AgentStatusEngine,
    apply_transition,
)
from fleetwatch.timeutil import Clock, as_utc, utc_now

logger = logging.getLogger(__name__)

OFFLINE_REASON = "Missed heartbeats"


def seconds_since_heartbeat(agent: Agent, now: datetime) -> float:
    return (as_utc(now) - as_utc(agent.last_heartbeat)).total_seconds()


def is_online(
    agent: Agent,
    now: datetime,
    threshold: float = OFFLINE_THRESHOLD_SECONDS,
) -> bool:
    return seconds_since_heartbeat(agent, now) <= threshold


def effective_status(
    agent: Agent,
    now: datetime,
    threshold: float = OFFLINE_THRESHOLD_SECONDS,
) -> AgentStatus:
    """Display status: silent agents read OFFLINE, live ones never do."""
    if not is_online(agent, now, threshold):
        return AgentStatus.OFFLINE
    if agent.status == AgentStatus.OFFLINE:
        return AgentStatus.IDLE
    return AgentStatus(agent.status)


@dataclass(frozen=True)
class SystemHealth:
    total_agents: int
    online_agents: int
    offline_agents: int
    average_response_time: float
    error_rate: float
    health_score: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_error_health(health: dict[str, Any] | None) -> bool:
    if not health:
        return False
    if health.get("status") == "unhealthy":
        return True
    errors = health.get("errors")
    return isinstance(errors, list) and len(errors) > 0


def _response_time(health: dict[str, Any] | None) -> float | None:
    if not health:
        return None
    metrics = health.get("metrics")
    if not isinstance(metrics, dict):
        return None
    value = metrics.get("responseTime", metrics.get("response_time"))
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


class HeartbeatReconciler:
    def __init__(
        self,
        agent_repo: AgentRepository,
        history_repo: AgentHistoryRepository,
        heartbeat_repo: HeartbeatRepository | None = None,
        *,
        ledger: ActivityLedger | None = None,
        dispatcher: TelemetryDispatcher | None = None,
        status_engine: AgentStatusEngine | None = None,
        clock: Clock = utc_now,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
        offline_threshold: float = OFFLINE_THRESHOLD_SECONDS,
        history_limit: int = STATUS_HISTORY_LIMIT,
        retention: timedelta = timedelta(hours=HEARTBEAT_RETENTION_HOURS),
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if offline_threshold <= 0:
            raise ValueError("offline_threshold must be positive")
        self._agents = agent_repo
        self._history = history_repo
        self._heartbeats = heartbeat_repo
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._engine = status_engine
        self._clock = clock
        self._interval = interval
        self._threshold = offline_threshold
        self._history_limit = history_limit
        self._retention = retention
        self._task: asyncio.Task[None] | None = None

    @property
    def offline_threshold(self) -> float:
        return self._threshold

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> list[str]:
        """One reconciliation tick. Returns the ids forced OFFLINE."""
        now = self._clock()
        cutoff = now - timedelta(seconds=self._threshold)
        stale = await self._agents.find_stale(cutoff)
        forced: list[str] = []
        for agent in stale:
            try:
                changed = await self._force_offline(agent.id, cutoff, now)
            except Exception:
                logger.warning(
                    "event=reconcile_agent_failed agent_id=%s",
                    agent.id,
                    exc_info=True,
                )
                continue
            if changed:
                forced.append(agent.id)
        if forced:
            logger.info(
                "event=agents_marked_offline count=%d ids=%s",
                len(forced),
                ",".join(forced),
            )
        return forced

    def _hold(
        self, agent_id: str
    ) -> contextlib.AbstractAsyncContextManager[None]:
        if self._engine is None:
            return contextlib.nullcontext()
        return self._engine.hold(agent_id)

    async def _force_offline(
        self, agent_id: str, cutoff: datetime, now: datetime
    ) -> bool:
        """Persist OFFLINE for one agent if it is still silent.

        The row is re-read under the agent's lock so a heartbeat that
        landed after ``find_stale`` is never overwritten. Returns False
        when the agent recovered, vanished or is already OFFLINE.
        """
        async with self._hold(agent_id):
            agent = await self._agents.get(agent_id)
            if (
                agent is None
                or agent.status == AgentStatus.OFFLINE
                or as_utc(agent.last_heartbeat) >= as_utc(cutoff)
            ):
                logger.debug("event=reconcile_skipped agent_id=%s", agent_id)
                return False
            previous = agent.status
            last_heartbeat = as_utc(agent.last_heartbeat)
            silent_for = seconds_since_heartbeat(agent, now)
            apply_transition(
                agent,
                AgentStatus.OFFLINE,
                OFFLINE_REASON,
                now,
                self._history_limit,
            )
            await self._agents.save(agent)
            await self._history.add(
                AgentHistory(
                    agent_id=agent.id,
                    change_type=AgentChangeType.STATUS_CHANGE,
                    from_value={"status": str(previous)},
                    to_value={"status": str(AgentStatus.OFFLINE)},
                    meta={
                        "source": "reconciler",
                        "last_heartbeat": last_heartbeat.isoformat(),
                    },
                    created_at=now,
                )
            )
        await self._record_offline(agent.id, previous, last_heartbeat)
        await emit_agent_offline(
            self._dispatcher, agent.id, str(previous), silent_for
        )
        return True

    async def _record_offline(
        self, agent_id: str, previous: str, last_heartbeat: datetime
    ) -> None:
        # The OFFLINE row is already committed; the audit entry is best effort.
        if self._ledger is None:
            return
        try:
            await self._ledger.append(
                ActivityDraft(
                    agent_id=agent_id,
                    activity_type=ActivityType.STATUS_CHANGE,
                    description="Agent went offline due to missed heartbeats",
                    input_tokens=0,
                    output_tokens=0,
                    metadata={
                        "previousStatus": str(previous),
                        "lastHeartbeat": last_heartbeat.isoformat(),
                    },
                )
            )
        except Exception:
            logger.warning(
                "event=offline_activity_failed agent_id=%s",
                agent_id,
                exc_info=True,
            )

    # ── Background loop ──────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name="heartbeat-reconciler"
        )
        logger.info(
            "event=reconciler_started interval_s=%.1f threshold_s=%.1f",
            self._interval,
            self._threshold,
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("event=reconciler_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.error("event=reconcile_tick_failed", exc_info=True)
            await asyncio.sleep(self._interval)

    # ── Health and retention ─────────────────────────────

    async def system_health(
        self, window: timedelta = timedelta(seconds=HEALTH_WINDOW_SECONDS)
    ) -> SystemHealth:
        if self._heartbeats is None:
            raise RuntimeError("system_health needs a heartbeat repository")
        now = self._clock()
        agents = await self._agents.list_all()
        recent = (await self._heartbeats.since(now - window))[:100]

        total = len(agents)
        online = sum(1 for a in agents if is_online(a, now, self._threshold))

        checks = [h for h in recent if h.health]
        errors = sum(1 for h in checks if _is_error_health(h.health))
        error_rate = errors / len(checks) * 100 if checks else 0.0

        times = [
            t for t in (_response_time(h.health) for h in recent)
            if t is not None
        ]
        average = sum(times) / len(times) if times else 0.0

        online_ratio = online / total if total else 1.0
        score = round(online_ratio * 100 - error_rate * 0.5)
        return SystemHealth(
            total_agents=total,
            online_agents=online,
            offline_agents=total - online,
            average_response_time=average,
            error_rate=error_rate,
            health_score=max(0, min(100, score)),
        )

    async def cleanup_old_heartbeats(
        self, retention: timedelta | None = None
    ) -> int:
        """Delete heartbeat rows older than the retention window."""
        if self._heartbeats is None:
            return 0
        removed = await self._heartbeats.delete_before(
            self._clock() - (retention or self._retention)
        )
        logger.info("event=heartbeats_cleaned removed=%d", removed)
        return removed
