"""Shared-secret authentication for the fleet API."""

from __future__ import annotations

import hmac
import logging

from fastapi import Request, Response
from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.responses import JSONResponse

from fleetwatch.api.schemas import APIResponse
from fleetwatch.constants import (
    API_KEY_HEADER,
    AUTH_EXEMPT_PATHS,
    AUTH_EXEMPT_PREFIXES,
)

logger = logging.getLogger(__name__)

_BEARER = "bearer "


def _presented_key(request: Request) -> str:
    """The key from ``X-API-Key``, else from ``Authorization: Bearer``."""
    key = request.headers.get(API_KEY_HEADER)
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth[: len(_BEARER)].lower() == _BEARER:
        return auth[len(_BEARER):].strip()
    return ""


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require the configured key on every non-exempt route.

    Disabled while ``Settings.api_key`` is empty. Agent SDKs that only
    speak bearer auth may send the key as ``Authorization: Bearer``.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        expected: str = request.app.state.settings.api_key
        path = request.url.path
        if (
            not expected
            or request.method == "OPTIONS"
            or path in AUTH_EXEMPT_PATHS
            or path.startswith(AUTH_EXEMPT_PREFIXES)
        ):
            return await call_next(request)

        if hmac.compare_digest(_presented_key(request), expected):
            return await call_next(request)

        logger.warning(
            "event=auth_rejected method=%s path=%s", request.method, path
        )
        return JSONResponse(
            status_code=401,
            content=APIResponse(
                success=False, error="Invalid or missing API key"
            ).model_dump(),
        )
