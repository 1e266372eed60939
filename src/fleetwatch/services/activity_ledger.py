"""Activity ledger -- the single write path for agent activity.

``append`` runs eight steps in order:

1. fill missing token counts from the input/output payloads
2. total = input + output
3. price the activity when a model is named
4. resolve the parent (explicit id, else the trace head)
5. persist
6. advance the trace head
7. add the token counts to the referenced ticket
8. notify the status engine

A failure in step 5 raises ``PersistenceError`` and nothing else
happens. Steps 6 to 8 run after the activity is stored; each failure
is logged and swallowed, and the stored activity is kept.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from fleetwatch.constants import (
    DEFAULT_PAGE_LIMIT,
    ERROR_TRUNCATION_CHARS,
    ActivityType,
)
from fleetwatch.costing.calculator import CostBreakdown, calculate_cost
from fleetwatch.costing.pricing import PricingResolver
from fleetwatch.costing.tokens import TokenEstimator
from fleetwatch.errors import ActivityNotFoundError, PersistenceError
from fleetwatch.models.activity import Activity
from fleetwatch.observability.dispatcher import TelemetryDispatcher
from fleetwatch.observability.emitters import (
    emit_activity_recorded,
    emit_activity_updated,
)
from fleetwatch.repositories.protocols import (
    ActivityFilter,
    ActivityRepository,
    TicketRepository,
)
from fleetwatch.services.status_engine import AgentStatusEngine
from fleetwatch.services.trace_chain import TraceChain
from fleetwatch.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)

_TICKET_OPERATIONS: dict[str, ActivityType] = {
    "create": ActivityType.CREATE_TICKET,
    "update": ActivityType.UPDATE_TICKET,
    "delete": ActivityType.DELETE_TICKET,
    "assign": ActivityType.ASSIGN_TICKET,
    "close": ActivityType.CLOSE_TICKET,
}


def new_trace_id() -> str:
    return f"trace-{uuid.uuid4().hex}"


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


class ActivityDraft(BaseModel):
    """An activity as submitted by a caller, before derivation.

    Token counts left as None are estimated; a caller-supplied total
    is not accepted (it is always recomputed).
    """

    id: str | None = None
    agent_id: str = Field(min_length=1)
    activity_type: str = Field(min_length=1)
    description: str = ""

    input_prompt: str | None = None
    output: str | None = None
    content_parts: dict[str, Any] | None = None

    input_tokens: int | None = Field(default=None, ge=0)
    output_tokens: int | None = Field(default=None, ge=0)
    cache_hits: int = Field(default=0, ge=0)

    tool_name: str | None = None
    tool_input: Any = None
    tool_output: Any = None
    api_endpoint: str | None = None
    api_method: str | None = None
    api_status_code: int | None = None
    duration_ms: int = Field(default=0, ge=0)

    ticket_id: str | None = None
    parent_activity_id: str | None = None
    trace_id: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    model_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityPatch(BaseModel):
    """Follow-up changes to a stored activity.

    Fields not set are left untouched; ``metadata`` is shallow-merged.
    """

    output: str | None = None
    output_tokens: int | None = Field(default=None, ge=0)
    duration_ms: int | None = Field(default=None, ge=0)
    api_status_code: int | None = None
    tool_output: Any = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ActivityPage:
    items: list[Activity]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 1
        return max(1, math.ceil(self.total / self.limit))


class ActivityLedger:
    def __init__(
        self,
        activity_repo: ActivityRepository,
        ticket_repo: TicketRepository,
        status_engine: AgentStatusEngine,
        trace_chain: TraceChain,
        estimator: TokenEstimator,
        dispatcher: TelemetryDispatcher | None = None,
        clock: Clock = utc_now,
        resolver: PricingResolver | None = None,
    ) -> None:
        self._activities = activity_repo
        self._tickets = ticket_repo
        self._status = status_engine
        self._chain = trace_chain
        self._estimator = estimator
        self._dispatcher = dispatcher
        self._clock = clock
        self._resolver = resolver

    @property
    def trace_chain(self) -> TraceChain:
        return self._chain

    # ── Write path ───────────────────────────────────────

    async def append(self, draft: ActivityDraft) -> Activity:
        input_tokens = (
            draft.input_tokens
            if draft.input_tokens is not None
            else self._estimator.estimate(draft.input_prompt)
        )
        output_tokens = (
            draft.output_tokens
            if draft.output_tokens is not None
            else self._estimator.estimate(draft.output)
        )
        total_tokens = input_tokens + output_tokens

        cost = self._price(draft.model_name, input_tokens, output_tokens)

        content_parts = dict(draft.content_parts or {})
        if not content_parts.get("request") and draft.input_prompt:
            content_parts["request"] = {"prompt": draft.input_prompt}
        if not content_parts.get("response") and draft.output:
            content_parts["response"] = {"output": draft.output}

        parent_id = draft.parent_activity_id
        if parent_id is None and draft.trace_id:
            parent_id = self._chain.head(draft.trace_id)

        metadata = dict(draft.metadata)
        if cost is not None:
            metadata["cost"] = cost.to_dict()

        activity = Activity(
            id=draft.id or str(uuid.uuid4()),
            agent_id=draft.agent_id,
            activity_type=draft.activity_type,
            description=draft.description,
            input_prompt=draft.input_prompt,
            output=draft.output,
            content_parts=content_parts,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            cache_hits=draft.cache_hits,
            tool_name=draft.tool_name,
            tool_input=draft.tool_input,
            tool_output=draft.tool_output,
            api_endpoint=draft.api_endpoint,
            api_method=draft.api_method,
            api_status_code=draft.api_status_code,
            duration_ms=draft.duration_ms,
            ticket_id=draft.ticket_id,
            parent_activity_id=parent_id,
            trace_id=draft.trace_id,
            session_id=draft.session_id,
            request_id=draft.request_id,
            model_name=draft.model_name,
            cost_input=cost.input_cost if cost else None,
            cost_output=cost.output_cost if cost else None,
            cost_total=cost.total_cost if cost else None,
            meta=metadata,
            created_at=self._clock(),
        )

        try:
            activity = await self._activities.add(activity)
        except Exception as exc:
            logger.error(
                "event=activity_persist_failed agent_id=%s type=%s",
                draft.agent_id,
                draft.activity_type,
                exc_info=True,
            )
            raise PersistenceError("append activity", str(exc)) from exc

        logger.debug(
            "event=activity_recorded id=%s agent_id=%s type=%s tokens=%d",
            activity.id,
            activity.agent_id,
            activity.activity_type,
            total_tokens,
        )

        if draft.trace_id:
            try:
                self._chain.advance(draft.trace_id, activity.id)
            except Exception:
                self._side_effect_failed("trace_head", activity)

        if draft.ticket_id and total_tokens > 0:
            try:
                found = await self._tickets.increment_tokens(
                    draft.ticket_id, input_tokens, output_tokens
                )
                if not found:
                    logger.warning(
                        "event=ticket_missing ticket_id=%s activity_id=%s",
                        draft.ticket_id,
                        activity.id,
                    )
            except Exception:
                self._side_effect_failed("ticket_counters", activity)

        try:
            await self._status.on_activity(
                activity.agent_id, activity.activity_type
            )
        except Exception:
            self._side_effect_failed("status_update", activity)

        await emit_activity_recorded(self._dispatcher, activity)
        return activity

    async def update(
        self, activity_id: str, patch: ActivityPatch
    ) -> Activity:
        """Apply a follow-up to a stored activity.

        Replacing ``output`` without ``output_tokens`` re-estimates the
        output tokens from the new text. Totals and cost are recomputed
        from the stored input tokens whenever output tokens change.
        """
        activity = await self.get(activity_id)
        provided = patch.model_fields_set
        changed: list[str] = []

        output_tokens: int | None = None
        if "output" in provided:
            activity.output = patch.output
            changed.append("output")
            if patch.output_tokens is None:
                output_tokens = self._estimator.estimate(patch.output)
        if patch.output_tokens is not None:
            output_tokens = patch.output_tokens

        metadata = dict(activity.meta or {})
        if output_tokens is not None:
            activity.output_tokens = output_tokens
            activity.total_tokens = activity.input_tokens + output_tokens
            changed.append("output_tokens")
            cost = self._price(
                activity.model_name, activity.input_tokens, output_tokens
            )
            activity.cost_input = cost.input_cost if cost else None
            activity.cost_output = cost.output_cost if cost else None
            activity.cost_total = cost.total_cost if cost else None
            if cost is not None:
                metadata["cost"] = cost.to_dict()
            else:
                metadata.pop("cost", None)

        if patch.duration_ms is not None:
            activity.duration_ms = patch.duration_ms
            changed.append("duration_ms")
        if "api_status_code" in provided:
            activity.api_status_code = patch.api_status_code
            changed.append("api_status_code")
        if "tool_output" in provided:
            activity.tool_output = patch.tool_output
            changed.append("tool_output")
        if patch.metadata:
            metadata.update(patch.metadata)
            changed.append("metadata")
        activity.meta = metadata

        try:
            activity = await self._activities.save(activity)
        except Exception as exc:
            raise PersistenceError("update activity", str(exc)) from exc

        logger.debug(
            "event=activity_updated id=%s fields=%s",
            activity_id,
            ",".join(changed),
        )
        await emit_activity_updated(self._dispatcher, activity, changed)
        return activity

    async def delete(self, activity_id: str) -> None:
        """Remove an activity record.

        Ticket counters and status history it contributed to are kept.
        """
        try:
            deleted = await self._activities.delete(activity_id)
        except Exception as exc:
            raise PersistenceError("delete activity", str(exc)) from exc
        if not deleted:
            raise ActivityNotFoundError(activity_id)
        logger.info("event=activity_deleted id=%s", activity_id)

    # ── Reads ────────────────────────────────────────────

    async def get(self, activity_id: str) -> Activity:
        try:
            activity = await self._activities.get(activity_id)
        except Exception as exc:
            raise PersistenceError("read activity", str(exc)) from exc
        if activity is None:
            raise ActivityNotFoundError(activity_id)
        return activity

    async def list(
        self,
        filters: ActivityFilter | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> ActivityPage:
        filters = filters or ActivityFilter()
        page = max(1, page)
        try:
            total = await self._activities.count(filters)
            items = await self._activities.find(
                filters, offset=(page - 1) * limit, limit=limit
            )
        except Exception as exc:
            raise PersistenceError("list activities", str(exc)) from exc
        return ActivityPage(items=items, total=total, page=page, limit=limit)

    async def trace(self, trace_id: str) -> list[Activity]:
        """All activities sharing a trace, oldest first."""
        try:
            return await self._activities.find(
                ActivityFilter(trace_id=trace_id)
            )
        except Exception as exc:
            raise PersistenceError("read trace", str(exc)) from exc

    async def children(self, activity_id: str) -> list[Activity]:
        try:
            return await self._activities.children(activity_id)
        except Exception as exc:
            raise PersistenceError("read children", str(exc)) from exc

    # ── Recorders ────────────────────────────────────────

    async def record_tool_call(
        self,
        agent_id: str,
        tool_name: str,
        tool_input: Any,
        tool_output: Any,
        duration_ms: int = 0,
        **context: Any,
    ) -> Activity:
        return await self.append(
            ActivityDraft(
                agent_id=agent_id,
                activity_type=ActivityType.TOOL_CALL,
                description=f"Tool: {tool_name}",
                tool_name=tool_name,
                tool_input=tool_input,
                tool_output=tool_output,
                input_prompt=_dump(tool_input),
                output=(
                    tool_output
                    if isinstance(tool_output, str)
                    else _dump(tool_output)
                ),
                duration_ms=duration_ms,
                **context,
            )
        )

    async def record_api_call(
        self,
        agent_id: str,
        url: str,
        method: str,
        status_code: int,
        *,
        request_body: Any = None,
        response_body: Any = None,
        headers: dict[str, Any] | None = None,
        duration_ms: int = 0,
        **context: Any,
    ) -> Activity:
        request = {"url": url, "method": method, "body": request_body}
        response = {"statusCode": status_code, "body": response_body}
        return await self.append(
            ActivityDraft(
                agent_id=agent_id,
                activity_type=ActivityType.API_CALL,
                description=f"{method} {url} -> {status_code}",
                input_prompt=_dump(request),
                output=_dump(response),
                content_parts={
                    "request": request,
                    "response": response,
                    "headers": headers or {},
                },
                api_endpoint=url,
                api_method=method,
                api_status_code=status_code,
                duration_ms=duration_ms,
                **context,
            )
        )

    async def record_ticket_operation(
        self,
        agent_id: str,
        operation: str,
        ticket_id: str,
        details: Any = None,
        **context: Any,
    ) -> Activity:
        activity_type = _TICKET_OPERATIONS.get(operation)
        if activity_type is None:
            raise ValueError(f"Unknown ticket operation: {operation}")
        return await self.append(
            ActivityDraft(
                agent_id=agent_id,
                activity_type=activity_type,
                description=f"Ticket {operation}: {ticket_id}",
                ticket_id=ticket_id,
                input_prompt=_dump(details),
                output=_dump({
                    "success": True,
                    "ticketId": ticket_id,
                    "operation": operation,
                }),
                **context,
            )
        )

    async def record_with_timing[T](
        self,
        draft: ActivityDraft,
        fn: Callable[[], Awaitable[T]],
    ) -> tuple[T, Activity]:
        """Run ``fn`` and record it with its wall-clock duration.

        If ``fn`` raises, an ``agent_error`` activity carrying the error
        text is recorded and the exception propagates.
        """
        started = time.perf_counter()
        try:
            result = await fn()
        except Exception as exc:
            duration = int((time.perf_counter() - started) * 1000)
            message = str(exc)[:ERROR_TRUNCATION_CHARS]
            await self.append(
                draft.model_copy(
                    update={
                        "duration_ms": duration,
                        "activity_type": ActivityType.AGENT_ERROR,
                        "description": f"Error: {message}",
                        "output": _dump({"error": message}),
                        "output_tokens": None,
                    }
                )
            )
            raise
        duration = int((time.perf_counter() - started) * 1000)
        activity = await self.append(
            draft.model_copy(update={"duration_ms": duration})
        )
        return result, activity

    # ── Internals ────────────────────────────────────────

    def _price(
        self,
        model_name: str | None,
        input_tokens: int,
        output_tokens: int,
    ) -> CostBreakdown | None:
        if not model_name or not (input_tokens or output_tokens):
            return None
        return calculate_cost(
            input_tokens, output_tokens, model_name, self._resolver
        )

    @staticmethod
    def _side_effect_failed(step: str, activity: Activity) -> None:
        logger.warning(
            "event=ledger_side_effect_failed step=%s activity_id=%s"
            " agent_id=%s",
            step,
            activity.id,
            activity.agent_id,
            exc_info=True,
        )
