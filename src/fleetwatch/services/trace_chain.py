"""In-memory map from trace id to the most recent activity in that trace.

Used to auto-chain activities that share a trace when the caller gives
no explicit parent. The lookup in ``head`` and the write in ``advance``
are separate steps: two appends racing on one trace may resolve the
same parent. The map is not persisted and is lost on restart.
"""

from __future__ import annotations

from collections import OrderedDict

from fleetwatch.constants import TRACE_CHAIN_MAX_TRACES


class TraceChain:
    def __init__(self, max_traces: int | None = TRACE_CHAIN_MAX_TRACES) -> None:
        if max_traces is not None and max_traces < 1:
            raise ValueError("max_traces must be >= 1")
        self._max_traces = max_traces
        self._heads: OrderedDict[str, str] = OrderedDict()

    def head(self, trace_id: str) -> str | None:
        return self._heads.get(trace_id)

    def advance(self, trace_id: str, activity_id: str) -> None:
        """Make ``activity_id`` the head of ``trace_id`` (last writer wins)."""
        self._heads[trace_id] = activity_id
        self._heads.move_to_end(trace_id)
        if self._max_traces is not None:
            # Least recently advanced traces go first
            while len(self._heads) > self._max_traces:
                self._heads.popitem(last=False)

    def forget(self, trace_id: str) -> None:
        self._heads.pop(trace_id, None)

    def clear(self) -> None:
        self._heads.clear()

    def __len__(self) -> int:
        return len(self._heads)

    def __contains__(self, trace_id: object) -> bool:
        return trace_id in self._heads
