"""Tests for per-key async locking."""

from __future__ import annotations

import asyncio

from fleetwatch.resilience.keyed_lock import KeyedLock


async def test_same_key_is_serialized() -> None:
    locks = KeyedLock()
    events: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("agent-1"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert events == ["a-in", "a-out", "b-in", "b-out"]


async def test_different_keys_run_concurrently() -> None:
    locks = KeyedLock()
    inside = asyncio.Event()

    async def first() -> None:
        async with locks.hold("k1"):
            inside.set()
            await asyncio.sleep(0.01)

    async def second() -> None:
        await inside.wait()
        async with locks.hold("k2"):
            assert locks.locked("k1")

    await asyncio.gather(first(), second())


async def test_unused_keys_are_dropped() -> None:
    locks = KeyedLock()
    async with locks.hold("k"):
        assert len(locks) == 1
        assert locks.locked("k")
    assert len(locks) == 0
    assert not locks.locked("k")
