"""Agent status state machine.

Statuses form a cycle over IDLE, THINKING, WORKING and OFFLINE with no
terminal state. Activities are inferred signals: their type is
classified and mapped to a target status through a fixed table.
Heartbeats are authoritative self-reports and set any status directly.

Each update is a read-modify-write of the agent record. Without
``serialize=True`` two concurrent updates for the same agent race and
the last write wins; a transition can then be missing from
``status_history`` while the final status is still correct.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from fleetwatch.constants import (
    DEFAULT_AGENT_TYPE,
    DEFAULT_TOKENS_AVAILABLE,
    STATUS_HISTORY_LIMIT,
    ActivityType,
    AgentChangeType,
    AgentStatus,
)
from fleetwatch.errors import AgentNotFoundError, PersistenceError
from fleetwatch.models.agent import Agent
from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.emitters import (
    emit_heartbeat,
    emit_status_changed,
)
from fleetwatch.repositories.protocols import (
    AgentHistoryRepository,
    AgentRepository,
    HeartbeatRepository,
)
from fleetwatch.resilience.keyed_lock import KeyedLock
from fleetwatch.timeutil import Clock, as_utc, elapsed_ms, utc_now

logger = logging.getLogger(__name__)

HEARTBEAT_TRANSITION_REASON = "Status transition via heartbeat"


class ActivityClass(StrEnum):
    REASONING = "reasoning"
    TOOL = "tool"
    COMPLETION = "completion"
    ERROR = "error"
    OTHER = "other"


_CLASSIFICATION: dict[str, ActivityClass] = {
    ActivityType.AGENT_REASONING: ActivityClass.REASONING,
    ActivityType.REASONING: ActivityClass.REASONING,
    ActivityType.AGENT_TURN: ActivityClass.REASONING,
    ActivityType.TOOL_CALL: ActivityClass.TOOL,
    ActivityType.AGENT_COMPLETED: ActivityClass.COMPLETION,
    ActivityType.AGENT_ERROR: ActivityClass.ERROR,
}

_TRANSITIONS: dict[ActivityClass, AgentStatus | None] = {
    ActivityClass.REASONING: AgentStatus.THINKING,
    ActivityClass.TOOL: AgentStatus.WORKING,
    ActivityClass.COMPLETION: AgentStatus.IDLE,
    ActivityClass.ERROR: AgentStatus.IDLE,
    ActivityClass.OTHER: None,
}


def classify_activity(activity_type: str) -> ActivityClass:
    """Map a free-text activity type onto its class (default OTHER)."""
    return _CLASSIFICATION.get(activity_type, ActivityClass.OTHER)


def target_for(activity_type: str) -> tuple[AgentStatus, str] | None:
    """Target status and history reason implied by an activity type."""
    cls = classify_activity(activity_type)
    target = _TRANSITIONS[cls]
    if target is None:
        return None
    match cls:
        case ActivityClass.REASONING:
            reason = f"Started {activity_type}"
        case ActivityClass.TOOL:
            reason = "Executing tool"
        case ActivityClass.COMPLETION:
            reason = "Task completed"
        case _:
            reason = "Error occurred"
    return target, reason


def normalize_status(value: str | None) -> AgentStatus:
    """Upper-case a reported status; anything unknown becomes IDLE."""
    if not value:
        return AgentStatus.IDLE
    try:
        return AgentStatus(value.strip().upper())
    except ValueError:
        return AgentStatus.IDLE


@dataclass(frozen=True)
class StatusTransition:
    agent_id: str
    previous: AgentStatus
    status: AgentStatus
    reason: str
    duration_ms: int
    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "previous": self.previous,
            "status": self.status,
            "reason": self.reason,
            "duration_ms": self.duration_ms,
            "at": self.at.isoformat(),
        }


def apply_transition(
    agent: Agent,
    target: AgentStatus,
    reason: str,
    now: datetime,
    limit: int = STATUS_HISTORY_LIMIT,
) -> StatusTransition | None:
    """Move ``agent`` to ``target`` in memory.

    Appends the status being left, with how long it was held, to
    ``status_history`` and keeps the most recent ``limit`` entries.
    Returns None (and changes nothing) for a self-transition.
    """
    previous = AgentStatus(agent.status)
    if previous == target:
        return None
    since = as_utc(agent.current_status_since)
    duration = elapsed_ms(since, now)
    history = list(agent.status_history or [])
    history.append({
        "status": str(previous),
        "entered_at": since.isoformat(),
        "duration_ms": duration,
        "reason": reason,
    })
    # New list object so the JSON column is flagged dirty on merge
    agent.status_history = history[-limit:]
    agent.status = target
    agent.current_status_since = now
    agent.last_active = now
    return StatusTransition(
        agent_id=agent.id,
        previous=previous,
        status=target,
        reason=reason,
        duration_ms=duration,
        at=now,
    )


class HeartbeatReport(BaseModel):
    """A heartbeat as submitted by an agent."""

    agent_id: str = Field(min_length=1)
    status: str | None = None
    name: str | None = None
    type: str | None = None
    tokens_used: int | None = Field(default=None, ge=0)
    tokens_available: int | None = Field(default=None, ge=0)
    health: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


def new_agent(
    agent_id: str,
    now: datetime,
    *,
    name: str | None = None,
    agent_type: str | None = None,
    status: AgentStatus = AgentStatus.IDLE,
    tokens_available: int | None = None,
) -> Agent:
    return Agent(
        id=agent_id,
        name=name or agent_id,
        type=agent_type or DEFAULT_AGENT_TYPE,
        status=status,
        tokens_available=(
            DEFAULT_TOKENS_AVAILABLE
            if tokens_available is None
            else tokens_available
        ),
        tokens_used=0,
        last_heartbeat=now,
        last_active=now,
        current_status_since=now,
        status_history=[],
        health={},
        config={},
        meta={},
        created_at=now,
        updated_at=now,
    )


class AgentStatusEngine:
    def __init__(
        self,
        agent_repo: AgentRepository,
        history_repo: AgentHistoryRepository,
        heartbeat_repo: HeartbeatRepository | None = None,
        *,
        dispatcher: TelemetryDispatcher | None = None,
        clock: Clock = utc_now,
        history_limit: int = STATUS_HISTORY_LIMIT,
        serialize: bool = False,
    ) -> None:
        self._agents = agent_repo
        self._history = history_repo
        self._heartbeats = heartbeat_repo
        self._dispatcher = dispatcher
        self._clock = clock
        self._history_limit = history_limit
        self._locks = KeyedLock() if serialize else None

    @property
    def serialized(self) -> bool:
        return self._locks is not None

    @contextlib.asynccontextmanager
    async def hold(self, agent_id: str) -> AsyncIterator[None]:
        """Exclusive access to one agent record; a no-op when unserialized."""
        if self._locks is None:
            yield
            return
        async with self._locks.hold(agent_id):
            yield

    async def register(
        self,
        agent_id: str,
        name: str | None = None,
        agent_type: str = DEFAULT_AGENT_TYPE,
        *,
        tokens_available: int | None = None,
        config: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Agent:
        """Create the agent as IDLE, or refresh an existing one."""
        async with self.hold(agent_id):
            return await self._register(
                agent_id,
                name,
                agent_type,
                tokens_available=tokens_available,
                config=config,
                metadata=metadata,
            )

    async def _register(
        self,
        agent_id: str,
        name: str | None,
        agent_type: str,
        *,
        tokens_available: int | None,
        config: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
    ) -> Agent:
        now = self._clock()
        try:
            agent = await self._agents.get(agent_id)
            if agent is None:
                agent = new_agent(
                    agent_id,
                    now,
                    name=name,
                    agent_type=agent_type,
                    tokens_available=tokens_available,
                )
                agent.config = dict(config or {})
                agent.meta = dict(metadata or {})
                agent = await self._agents.add(agent)
                logger.info(
                    "event=agent_registered agent_id=%s type=%s",
                    agent_id,
                    agent.type,
                )
                return agent
            if name:
                agent.name = name
            agent.type = agent_type or agent.type
            if tokens_available is not None:
                agent.tokens_available = tokens_available
            if config is not None:
                agent.config = dict(config)
            if metadata:
                agent.meta = {**(agent.meta or {}), **metadata}
            agent.last_active = now
            return await self._agents.save(agent)
        except Exception as exc:
            raise PersistenceError("register agent", str(exc)) from exc

    async def get(self, agent_id: str) -> Agent:
        agent = await self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def on_activity(
        self, agent_id: str, activity_type: str
    ) -> StatusTransition | None:
        """Apply the transition implied by an activity, if any.

        Unknown agents and activity types outside the table are no-ops.
        """
        target = target_for(activity_type)
        if target is None:
            return None
        if self._locks is None:
            return await self._on_activity(agent_id, *target)
        async with self._locks.hold(agent_id):
            return await self._on_activity(agent_id, *target)

    async def _on_activity(
        self, agent_id: str, target: AgentStatus, reason: str
    ) -> StatusTransition | None:
        agent = await self._agents.get(agent_id)
        if agent is None:
            logger.debug(
                "event=status_skipped agent_id=%s reason=unknown_agent",
                agent_id,
            )
            return None
        transition = apply_transition(
            agent, target, reason, self._clock(), self._history_limit
        )
        if transition is None:
            return None
        await self._agents.save(agent)
        logger.info(
            "event=status_changed agent_id=%s from=%s to=%s duration_ms=%d",
            agent_id,
            transition.previous,
            transition.status,
            transition.duration_ms,
        )
        await emit_status_changed(
            self._dispatcher,
            agent_id,
            transition.previous,
            transition.status,
            reason,
        )
        return transition

    async def on_heartbeat(self, report: HeartbeatReport) -> Agent:
        """Upsert the agent from a self-reported heartbeat.

        Timestamps and health are always refreshed. The reported status
        is applied as-is; a change is recorded in ``status_history`` and
        as a STATUS_CHANGE audit row. Persistence failures raise
        ``PersistenceError``.
        """
        if self._locks is None:
            return await self._on_heartbeat(report)
        async with self._locks.hold(report.agent_id):
            return await self._on_heartbeat(report)

    async def _on_heartbeat(self, report: HeartbeatReport) -> Agent:
        now = self._clock()
        status = normalize_status(report.status)
        transition: StatusTransition | None = None
        try:
            agent = await self._agents.get(report.agent_id)
            if agent is None:
                agent = new_agent(
                    report.agent_id,
                    now,
                    name=report.name,
                    agent_type=report.type,
                    status=status,
                    tokens_available=report.tokens_available,
                )
                self._apply_report(agent, report, now)
                agent = await self._agents.add(agent)
                logger.info(
                    "event=agent_registered agent_id=%s source=heartbeat",
                    report.agent_id,
                )
            else:
                transition = apply_transition(
                    agent,
                    status,
                    HEARTBEAT_TRANSITION_REASON,
                    now,
                    self._history_limit,
                )
                self._apply_report(agent, report, now)
                agent = await self._agents.save(agent)
            if transition is not None:
                await self._history.add(
                    AgentHistory(
                        agent_id=report.agent_id,
                        change_type=AgentChangeType.STATUS_CHANGE,
                        from_value={"status": str(transition.previous)},
                        to_value={"status": str(transition.status)},
                        meta={"source": "heartbeat"},
                        created_at=now,
                    )
                )
            if self._heartbeats is not None:
                await self._heartbeats.add(
                    Heartbeat(
                        agent_id=report.agent_id,
                        status=str(status),
                        tokens_used=report.tokens_used,
                        tokens_available=report.tokens_available,
                        health=dict(report.health),
                        meta=dict(report.metadata),
                        created_at=now,
                    )
                )
        except Exception as exc:
            raise PersistenceError("record heartbeat", str(exc)) from exc

        if transition is not None:
            logger.info(
                "event=status_changed agent_id=%s from=%s to=%s"
                " source=heartbeat",
                report.agent_id,
                transition.previous,
                transition.status,
            )
            await emit_status_changed(
                self._dispatcher,
                report.agent_id,
                transition.previous,
                transition.status,
                HEARTBEAT_TRANSITION_REASON,
            )
        await emit_heartbeat(self._dispatcher, report.agent_id, status)
        return agent

    @staticmethod
    def _apply_report(
        agent: Agent, report: HeartbeatReport, now: datetime
    ) -> None:
        if report.name:
            agent.name = report.name
        if report.type:
            agent.type = report.type
        if report.tokens_used is not None:
            agent.tokens_used = max(agent.tokens_used or 0, report.tokens_used)
        if report.tokens_available is not None:
            agent.tokens_available = report.tokens_available
        agent.health = dict(report.health)
        if report.metadata:
            agent.meta = {**(agent.meta or {}), **report.metadata}
        agent.last_heartbeat = now
        agent.last_active = now
