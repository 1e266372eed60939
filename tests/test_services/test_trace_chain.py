"""Tests for the trace head map."""

from __future__ import annotations

import pytest

from fleetwatch.services.trace_chain import TraceChain


def test_head_follows_latest_advance() -> None:
    chain = TraceChain()
    assert chain.head("t") is None
    chain.advance("t", "a1")
    chain.advance("t", "a2")
    assert chain.head("t") == "a2"
    assert len(chain) == 1


def test_least_recently_advanced_trace_evicted() -> None:
    chain = TraceChain(max_traces=2)
    chain.advance("t1", "a")
    chain.advance("t2", "b")
    chain.advance("t1", "c")
    chain.advance("t3", "d")
    assert "t2" not in chain
    assert chain.head("t1") == "c"
    assert chain.head("t3") == "d"


def test_forget_and_clear() -> None:
    chain = TraceChain()
    chain.advance("t1", "a")
    chain.advance("t2", "b")
    chain.forget("t1")
    chain.forget("missing")
    assert "t1" not in chain
    chain.clear()
    assert len(chain) == 0


def test_unbounded() -> None:
    chain = TraceChain(max_traces=None)
    for i in range(100):
        chain.advance(f"t{i}", "a")
    assert len(chain) == 100


def test_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        TraceChain(max_traces=0)
