"""Map engine exceptions onto the response envelope."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from fleetwatch.errors import (
    ActivityNotFoundError,
    AgentNotFoundError,
    FleetwatchError,
    PersistenceError,
    TicketNotFoundError,
    TicketTransitionError,
)

logger = logging.getLogger(__name__)

# User-facing text per failed operation; internals stay in the logs
_PERSISTENCE_MESSAGES = {
    "append activity": "activity could not be recorded",
    "record heartbeat": "heartbeat could not be recorded",
    "register agent": "agent could not be registered",
}


def _envelope(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "metadata": {},
        },
    )


async def _persistence_error(
    _request: Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, PersistenceError)
    logger.error(
        "event=persistence_failed operation=%s detail=%s",
        exc.operation,
        exc.detail,
    )
    return _envelope(
        500, _PERSISTENCE_MESSAGES.get(exc.operation, f"{exc.operation} failed")
    )


async def _not_found(_request: Request, exc: Exception) -> JSONResponse:
    return _envelope(404, str(exc))


async def _bad_request(_request: Request, exc: Exception) -> JSONResponse:
    return _envelope(400, str(exc))


async def _validation_error(
    _request: Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    parts = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return _envelope(400, "; ".join(parts) or "invalid request")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PersistenceError, _persistence_error)
    for not_found in (
        ActivityNotFoundError,
        AgentNotFoundError,
        TicketNotFoundError,
    ):
        app.add_exception_handler(not_found, _not_found)
    app.add_exception_handler(TicketTransitionError, _bad_request)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(FleetwatchError, _bad_request)
    app.add_exception_handler(ValueError, _bad_request)
