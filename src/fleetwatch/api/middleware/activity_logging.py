"""Record mutating API requests as api_call activities."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)

from fleetwatch.constants import (
    ACTIVITY_ID_HEADER,
    ACTIVITY_LOG_EXEMPT_PATHS,
    ACTIVITY_LOG_EXEMPT_PREFIXES,
    ACTIVITY_LOG_EXEMPT_SUFFIXES,
    AGENT_ID_HEADER,
    LOGGED_METHODS,
    MAX_LOGGED_BODY_CHARS,
    REDACTED_HEADERS,
    SYSTEM_AGENT_ID,
    TRACE_ID_HEADER,
)
from fleetwatch.services.activity_ledger import new_trace_id

logger = logging.getLogger(__name__)


def should_log(method: str, path: str) -> bool:
    if method not in LOGGED_METHODS:
        return False
    return not (
        path in ACTIVITY_LOG_EXEMPT_PATHS
        or path.startswith(ACTIVITY_LOG_EXEMPT_PREFIXES)
        or path.endswith(ACTIVITY_LOG_EXEMPT_SUFFIXES)
    )


def redact_headers(headers: Any) -> dict[str, str]:
    return {
        k: ("[REDACTED]" if k.lower() in REDACTED_HEADERS else v)
        for k, v in headers.items()
    }


def _body_value(raw: bytes) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")[:MAX_LOGGED_BODY_CHARS]
    try:
        return json.loads(text)
    except ValueError:
        return text


class ActivityLoggingMiddleware(BaseHTTPMiddleware):
    """Append an api_call activity for every mutating request.

    The acting agent comes from ``X-Agent-Id``, then the ``agentId``
    query parameter, else ``system``. ``X-Trace-Id`` is honoured or
    minted and echoed back. Recording is best effort: a ledger failure
    is logged and the response goes out unchanged.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        settings = getattr(request.app.state, "settings", None)
        state = getattr(request.app.state, "typed", None)
        path = request.url.path
        if (
            state is None
            or not getattr(settings, "log_api_requests", True)
            or not should_log(request.method, path)
        ):
            return await call_next(request)

        trace_id = request.headers.get(TRACE_ID_HEADER) or new_trace_id()
        agent_id = (
            request.headers.get(AGENT_ID_HEADER)
            or request.query_params.get("agentId")
            or SYSTEM_AGENT_ID
        )
        request_body = _body_value(await request.body())
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = int((time.perf_counter() - started) * 1000)
        response.headers[TRACE_ID_HEADER] = trace_id
        try:
            activity = await state.ledger.record_api_call(
                agent_id,
                path,
                request.method,
                response.status_code,
                request_body=request_body,
                headers=redact_headers(request.headers),
                duration_ms=duration_ms,
                input_tokens=0,
                output_tokens=0,
                trace_id=trace_id,
                metadata={
                    "source": "api",
                    "query": dict(request.query_params),
                },
            )
        except Exception:
            logger.warning(
                "event=request_activity_failed method=%s path=%s",
                request.method,
                path,
                exc_info=True,
            )
            return response
        response.headers[ACTIVITY_ID_HEADER] = activity.id
        return response
