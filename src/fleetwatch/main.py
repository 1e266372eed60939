"""FastAPI application with lifespan startup."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

# Phase 1: logging before any fleetwatch import
# (they transitively import litellm which reads LITELLM_LOG at import time)
from fleetwatch.logging_config import setup_logging

setup_logging()

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from fleetwatch import __version__  # noqa: E402
from fleetwatch.api.app_state import build_state, sql_repos  # noqa: E402
from fleetwatch.api.errors import register_error_handlers  # noqa: E402
from fleetwatch.api.middleware.activity_logging import (  # noqa: E402
    ActivityLoggingMiddleware,
)
from fleetwatch.api.middleware.auth import ApiKeyMiddleware  # noqa: E402
from fleetwatch.api.routes import (  # noqa: E402
    activities,
    agents,
    cost,
    health,
    snapshot,
    tickets,
)
from fleetwatch.config import Settings, create_app_engine  # noqa: E402
from fleetwatch.logging_config import (  # noqa: E402
    apply_log_level,
    cleanup_third_party_handlers,
)
from fleetwatch.models.base import Base  # noqa: E402
from fleetwatch.observability import initialize_telemetry  # noqa: E402

# Phase 2: Now that all imports (including litellm) are done,
# clear litellm's duplicate handlers.
cleanup_third_party_handlers()

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # 1. Use module-level settings (single source of truth)
    settings = _settings
    apply_log_level(settings.log_level, debug=settings.debug_mode)

    # 2. Create async SQLite engine (WAL set via pool-connect listener)
    engine = create_app_engine(
        settings.database_url, echo=settings.debug_mode
    )

    # 3. Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # 4. Shared session factory for every repository
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    # 5. Telemetry, then the engine components on top of it
    dispatcher = initialize_telemetry(settings)
    state = build_state(
        settings,
        sql_repos(session_factory),
        dispatcher,
        session_factory=session_factory,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.typed = state

    # 6. Security: warn if auth is disabled
    if not settings.api_key:
        _logger.warning(
            "event=no_api_key action=all_endpoints_public"
        )

    # 7. Background liveness sweep
    state.reconciler.start()

    yield

    # Cleanup
    await state.reconciler.stop()
    await engine.dispose()


app = FastAPI(
    title="fleetwatch",
    description=(
        "Token, cost and liveness tracking for fleets of AI agents"
    ),
    version=__version__,
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

# Middleware stack (Starlette LIFO: last added = outermost = runs first)
#
# Inbound request order:
#   CORSMiddleware (outermost) -> ApiKeyMiddleware
#     -> ActivityLoggingMiddleware -> Router
#
# CORS must be outermost so OPTIONS preflight is answered before
# ApiKeyMiddleware sees it. Rejected requests never reach the ledger.
_settings = Settings()
_cors_origins = [
    o.strip()
    for o in _settings.cors_origins.split(",")
    if o.strip()
]

app.add_middleware(ActivityLoggingMiddleware)
app.add_middleware(ApiKeyMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-API-Key",
        "Authorization",
        "X-Agent-Id",
        "X-Trace-Id",
    ],
    expose_headers=["X-Trace-Id", "X-Activity-Id"],
    allow_credentials=False,
)

register_error_handlers(app)

# Routes
app.include_router(health.router)
app.include_router(activities.router)
app.include_router(agents.router)
app.include_router(cost.router)
app.include_router(snapshot.router)
app.include_router(tickets.router)
