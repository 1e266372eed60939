"""Per-key async mutual exclusion.

KeyedLock serialises operations that share a key (for example the
read-modify-write of one agent record) while letting different keys
run concurrently. A key's lock is dropped once no holder or waiter
references it, so the map only holds keys in active use.

Single-process only -- each worker has its own instance.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class KeyedLock:
    """Usage::

        locks = KeyedLock()
        async with locks.hold("agent-1"):
            ...
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._guard = asyncio.Lock()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            async with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    self._entries.pop(key, None)

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
