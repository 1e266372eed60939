"""Process-wide logging setup in two idempotent phases.

``setup_logging()`` runs before litellm is imported (the token
estimator pulls it in) so litellm reads a quiet ``LITELLM_LOG``.
``cleanup_third_party_handlers()`` runs after the imports and strips
the StreamHandlers litellm attaches, so its records reach the root
handler exactly once. ``apply_log_level()`` is called again once
``Settings`` are loaded.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

LEVEL_ENV_VAR = "FLEETWATCH_LOG_LEVEL"

# Pinned to WARNING regardless of the configured level
_SUPPRESSED_LOGGERS = (
    "LiteLLM",
    "LiteLLM Router",
    "LiteLLM Proxy",
    "httpx",
    "aiosqlite",
    "sqlalchemy.engine",
)

# Loggers litellm decorates with its own handlers at import time
_LITELLM_LOGGERS = ("LiteLLM", "LiteLLM Router", "LiteLLM Proxy")

_phase1_done = False
_phase2_done = False


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get(LEVEL_ENV_VAR) or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | None = None) -> None:
    """Phase 1: root handler, format and third-party levels.

    ``level`` falls back to ``FLEETWATCH_LOG_LEVEL``, then INFO; an
    unknown name means INFO. Only the first call has any effect.
    """
    global _phase1_done  # noqa: PLW0603
    if _phase1_done:
        return
    _phase1_done = True

    os.environ.setdefault("LITELLM_LOG", "WARNING")

    logging.basicConfig(
        level=_resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def cleanup_third_party_handlers() -> None:
    """Phase 2: drop litellm's own handlers and let records propagate."""
    global _phase2_done  # noqa: PLW0603
    if _phase2_done:
        return
    _phase2_done = True

    for name in _LITELLM_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True


def apply_log_level(level: str, *, debug: bool = False) -> int:
    """Re-level the root logger from loaded settings.

    ``debug`` forces DEBUG. Suppressed loggers stay at WARNING.
    """
    resolved = logging.DEBUG if debug else _resolve_level(level)
    logging.getLogger().setLevel(resolved)
    return resolved
