"""Tests for two-phase logging configuration."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from unittest.mock import patch

import pytest

import fleetwatch.logging_config as mod
from fleetwatch.logging_config import (
    _SUPPRESSED_LOGGERS,
    apply_log_level,
    cleanup_third_party_handlers,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _reset_flags() -> Iterator[None]:
    """Reset the phase flags and root level around each test."""
    root = logging.getLogger()
    level = root.level
    mod._phase1_done = False
    mod._phase2_done = False
    yield
    root.setLevel(level)


def test_setup_logging_is_idempotent() -> None:
    with patch("fleetwatch.logging_config.logging.basicConfig") as bc:
        setup_logging()
        setup_logging()
        bc.assert_called_once()


def test_level_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLEETWATCH_LOG_LEVEL", "debug")
    with patch("fleetwatch.logging_config.logging.basicConfig") as bc:
        setup_logging()
    assert bc.call_args.kwargs["level"] == logging.DEBUG


def test_unknown_level_falls_back_to_info() -> None:
    with patch("fleetwatch.logging_config.logging.basicConfig") as bc:
        setup_logging("chatty")
    assert bc.call_args.kwargs["level"] == logging.INFO


def test_litellm_env_default_respects_existing(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LITELLM_LOG", "ERROR")
    setup_logging()
    assert mod.os.environ["LITELLM_LOG"] == "ERROR"


def test_suppressed_loggers_at_warning() -> None:
    setup_logging()
    for name in _SUPPRESSED_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_cleanup_clears_litellm_handlers_once() -> None:
    lg = logging.getLogger("LiteLLM")
    lg.addHandler(logging.StreamHandler())
    lg.propagate = False

    cleanup_third_party_handlers()
    assert lg.handlers == []
    assert lg.propagate is True

    handler = logging.StreamHandler()
    lg.addHandler(handler)
    cleanup_third_party_handlers()
    assert lg.handlers == [handler]
    lg.removeHandler(handler)


def test_apply_log_level() -> None:
    assert apply_log_level("warning") == logging.WARNING
    assert logging.getLogger().level == logging.WARNING
    assert apply_log_level("warning", debug=True) == logging.DEBUG
