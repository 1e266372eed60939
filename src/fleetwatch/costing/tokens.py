"""Approximate token counts for payloads submitted without them.

The exact path runs litellm's tokenizer for a fixed model family. Any
tokenizer failure (missing encoding files, offline host, unsupported
model) falls back to a characters × ratio heuristic keyed by content
class, so estimation always returns an integer.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

import litellm

from fleetwatch.constants import (
    DEFAULT_TOKENIZER_MODEL,
    TOKENS_PER_CHAR,
    ContentClass,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenStats:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cache_hits: int = 0


def canonical_text(payload: Any) -> str:
    """Serialise a structured payload to a stable string form."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    )


def approximate_tokens(
    text: str, content_class: ContentClass | str = ContentClass.MIXED
) -> int:
    if not text:
        return 0
    ratio = TOKENS_PER_CHAR.get(
        content_class, TOKENS_PER_CHAR[ContentClass.MIXED]
    )
    return math.ceil(len(text) * ratio)


class TokenEstimator:
    """Exact tokenizer with a heuristic fallback that never fails."""

    def __init__(
        self,
        model: str = DEFAULT_TOKENIZER_MODEL,
        *,
        exact: bool = True,
    ) -> None:
        self._model = model
        self._exact = exact
        self._tokenizer_failed = False

    @property
    def exact(self) -> bool:
        return self._exact and not self._tokenizer_failed

    def estimate(
        self,
        payload: Any,
        content_class: ContentClass | str = ContentClass.MIXED,
    ) -> int:
        if payload is None:
            return 0
        if not isinstance(payload, str):
            content_class = ContentClass.CODE
        text = canonical_text(payload)
        if not text:
            return 0
        if self.exact:
            try:
                return int(
                    litellm.token_counter(model=self._model, text=text)
                )
            except Exception:
                # Stay on the heuristic path for the rest of the process
                self._tokenizer_failed = True
                logger.warning(
                    "event=tokenizer_unavailable model=%s"
                    " action=fallback_to_heuristic",
                    self._model,
                    exc_info=True,
                )
        return approximate_tokens(text, content_class)

    def stats(
        self, input_payload: Any, output_payload: Any, cache_hits: int = 0
    ) -> TokenStats:
        input_tokens = self.estimate(input_payload)
        output_tokens = self.estimate(output_payload)
        return TokenStats(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cache_hits=cache_hits,
        )


_default_estimator = TokenEstimator()


def estimate_tokens(
    payload: Any, content_class: ContentClass | str = ContentClass.MIXED
) -> int:
    return _default_estimator.estimate(payload, content_class)


def format_token_count(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.2f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return f"{count:,}"
