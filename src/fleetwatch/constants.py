"""Shared constants: single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON, SQL,
API payloads) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class AgentStatus(StrEnum):
    """Operating status of a registered agent."""

    IDLE = "IDLE"
    THINKING = "THINKING"
    WORKING = "WORKING"
    OFFLINE = "OFFLINE"


class ActivityType(StrEnum):
    """Conventional activity types.

    Activity types are open strings; these are the ones the
    engine knows how to classify or emits itself.
    """

    # Ticket operations
    CREATE_TICKET = "create_ticket"
    UPDATE_TICKET = "update_ticket"
    DELETE_TICKET = "delete_ticket"
    ASSIGN_TICKET = "assign_ticket"
    CLOSE_TICKET = "close_ticket"

    # Agent operations
    AGENT_STARTED = "agent_started"
    AGENT_COMPLETED = "agent_completed"
    AGENT_ERROR = "agent_error"
    AGENT_TURN = "agent_turn"
    AGENT_REASONING = "agent_reasoning"
    REASONING = "reasoning"

    # Tool operations
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"

    # API operations
    API_CALL = "api_call"
    API_RESPONSE = "api_response"

    # System operations
    SYSTEM_EVENT = "system_event"
    STATUS_CHANGE = "status_change"
    HEARTBEAT = "heartbeat"


class TicketStatus(StrEnum):
    """Kanban columns."""

    BACKLOG = "Backlog"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    REVIEW = "Review"
    DONE = "Done"


class AgentChangeType(StrEnum):
    """Audit entry kinds in the agent_history table."""

    STATUS_CHANGE = "STATUS_CHANGE"


class ContentClass(StrEnum):
    """Declared content class for heuristic token estimation."""

    ENGLISH = "english"
    CODE = "code"
    MIXED = "mixed"


class AnomalyType(StrEnum):
    SPIKE = "spike"
    UNUSUAL_MODEL = "unusual_model"
    BUDGET_THRESHOLD = "budget_threshold"


class Severity(StrEnum):
    """Anomaly severity, most severe first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER: dict[str, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class CostTier(StrEnum):
    FREE = "free"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very-high"


class GroupBy(StrEnum):
    """Partition dimensions for grouped totals."""

    MODEL = "model"
    AGENT = "agent"
    TICKET = "ticket"
    DAY = "day"


class TelemetryEventType(StrEnum):
    ACTIVITY_RECORDED = "activity_recorded"
    ACTIVITY_UPDATED = "activity_updated"
    STATUS_CHANGED = "status_changed"
    AGENT_OFFLINE = "agent_offline"
    HEARTBEAT = "heartbeat"


# ── Named Constants ──────────────────────────────────────

CURRENCY = "USD"
UNKNOWN_MODEL = "unknown"
UNASSIGNED_TICKET = "unassigned"
AGGREGATED_MODEL = "aggregated"

# Agent defaults
DEFAULT_AGENT_TYPE = "worker"
DEFAULT_TOKENS_AVAILABLE = 1_000_000
STATUS_HISTORY_LIMIT = 50

# Heartbeat timing (seconds)
HEARTBEAT_INTERVAL_SECONDS = 30.0
OFFLINE_THRESHOLD_SECONDS = 60.0
HEARTBEAT_RETENTION_HOURS = 24
HEALTH_WINDOW_SECONDS = 300

# Trace chain bound
TRACE_CHAIN_MAX_TRACES = 10_000

# Token estimation ratios (tokens per character)
TOKENS_PER_CHAR: dict[str, float] = {
    ContentClass.ENGLISH: 0.25,  # ~4 chars per token
    ContentClass.CODE: 0.2,  # ~5 chars per token
    ContentClass.MIXED: 0.3,  # ~3.3 chars per token
}
DEFAULT_TOKENIZER_MODEL = "gpt-4"

# Budget and anomaly defaults
DEFAULT_DAILY_BUDGET = 10.0
SPIKE_STDDEV_THRESHOLD = 3.0
SPIKE_CRITICAL_STDDEV = 5.0
SPIKE_HIGH_STDDEV = 3.0
MIN_ANOMALY_COST = 0.5
BUDGET_ALERT_RATIO = 0.8
BUDGET_HIGH_RATIO = 0.9
MODEL_SHARE_THRESHOLD = 0.5
MODEL_SHARE_HIGH = 0.8
MODEL_MIN_COST = 10.0
MODEL_EXPECTED_SHARE = 0.3
FORECAST_OVERSPEND_RATIO = 1.2

# Pagination
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 500

ERROR_TRUNCATION_CHARS = 200
RECENT_ACTIVITY_LIMIT = 100

# ── Auth Exempt Paths ────────────────────────────────────

AUTH_EXEMPT_PATHS = frozenset({
    "/api/health",
    "/api/docs",
    "/api/openapi.json",
    "/api/redoc",
})
AUTH_EXEMPT_PREFIXES = ("/api/docs/",)
API_KEY_HEADER = "X-API-Key"

# ── Request Activity Logging ─────────────────────────────

LOGGED_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})
# Ingest, liveness and health traffic is never echoed into the ledger
ACTIVITY_LOG_EXEMPT_PATHS = frozenset({"/api/activities"})
ACTIVITY_LOG_EXEMPT_PREFIXES = ("/api/health", "/api/monitor", "/api/docs")
ACTIVITY_LOG_EXEMPT_SUFFIXES = ("/heartbeat",)
AGENT_ID_HEADER = "X-Agent-Id"
TRACE_ID_HEADER = "X-Trace-Id"
ACTIVITY_ID_HEADER = "X-Activity-Id"
SYSTEM_AGENT_ID = "system"
REDACTED_HEADERS = frozenset({
    "authorization",
    "cookie",
    "x-api-key",
    "api-key",
})
MAX_LOGGED_BODY_CHARS = 10_000
