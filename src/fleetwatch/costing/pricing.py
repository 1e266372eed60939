"""Model pricing table and free-text model name resolution.

Resolution order, first match wins:

1. exact key
2. lower-cased, stripped key
3. substring match in either direction (longest contained key first,
   then the shortest key containing the name)
4. family heuristics (``gpt-4`` + ``mini`` → gpt-4o-mini, ``claude`` +
   ``opus`` → claude-3-opus, ...; a bare family name falls back to the
   family's mid tier)
5. ``DEFAULT_PRICING``

Exact pins are checked before any heuristic so an explicit entry is
never shadowed by an older fuzzy rule.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """USD price per 1 000 tokens."""

    input: float
    output: float


# Pricing as of 2024 - update as needed
MODEL_PRICING: dict[str, ModelPricing] = {
    # OpenAI
    "gpt-4": ModelPricing(0.03, 0.06),
    "gpt-4-turbo": ModelPricing(0.01, 0.03),
    "gpt-4o": ModelPricing(0.005, 0.015),
    "gpt-4o-mini": ModelPricing(0.00015, 0.0006),
    "gpt-3.5-turbo": ModelPricing(0.0005, 0.0015),
    # Anthropic
    "claude-3-opus": ModelPricing(0.015, 0.075),
    "claude-3-sonnet": ModelPricing(0.003, 0.015),
    "claude-3-haiku": ModelPricing(0.00025, 0.00125),
    "claude-3-5-sonnet": ModelPricing(0.003, 0.015),
    "claude-3-5-haiku": ModelPricing(0.0008, 0.004),
    # Google
    "gemini-1.5-pro": ModelPricing(0.0035, 0.0105),
    "gemini-1.5-flash": ModelPricing(0.00035, 0.00105),
    "gemini-2.0-flash": ModelPricing(0.0001, 0.0004),
    # Custom / self-hosted (estimated)
    "moonshot/kimi-k2.5": ModelPricing(0.002, 0.008),
    "kimi-k2.5": ModelPricing(0.002, 0.008),
    "local-llm": ModelPricing(0.0, 0.0),
}

DEFAULT_PRICING = ModelPricing(0.01, 0.03)

# (required fragments, table key), checked in order
_FAMILY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("gpt-4", "mini"), "gpt-4o-mini"),
    (("gpt-4o",), "gpt-4o"),
    (("gpt-4",), "gpt-4"),
    (("claude", "opus"), "claude-3-opus"),
    (("claude", "haiku"), "claude-3-haiku"),
    (("claude",), "claude-3-sonnet"),
    (("gemini", "flash"), "gemini-1.5-flash"),
    (("gemini",), "gemini-1.5-pro"),
    (("kimi",), "kimi-k2.5"),
)


class PricingResolver:
    """Resolves model names against a pricing table. Never raises."""

    def __init__(
        self,
        table: Mapping[str, ModelPricing] | None = None,
        default: ModelPricing = DEFAULT_PRICING,
        extra: Mapping[str, ModelPricing] | None = None,
    ) -> None:
        merged = dict(MODEL_PRICING if table is None else table)
        if extra:
            merged.update(extra)
        self._table = merged
        self._normalized = {k.lower().strip(): v for k, v in merged.items()}
        self._default = default

    @property
    def default(self) -> ModelPricing:
        return self._default

    def known_models(self) -> list[str]:
        return list(self._table)

    def resolve(self, model_name: str | None) -> ModelPricing:
        if not model_name:
            return self._default

        exact = self._table.get(model_name)
        if exact is not None:
            return exact

        name = model_name.lower().strip()
        if not name:
            return self._default
        normalized = self._normalized.get(name)
        if normalized is not None:
            return normalized

        partial = self._substring_match(name)
        if partial is not None:
            return partial

        for fragments, key in _FAMILY_RULES:
            if all(f in name for f in fragments):
                family = self._normalized.get(key)
                if family is not None:
                    return family

        logger.debug("event=pricing_default model=%s", model_name)
        return self._default

    def _substring_match(self, name: str) -> ModelPricing | None:
        # Keys inside the name: most specific (longest) wins.
        # Name inside keys: closest (shortest) key wins.
        contained = [k for k in self._normalized if k and k in name]
        if contained:
            return self._normalized[max(contained, key=len)]
        containing = [k for k in self._normalized if name in k]
        if containing:
            return self._normalized[min(containing, key=len)]
        return None


_default_resolver = PricingResolver()


def resolve_pricing(model_name: str | None) -> ModelPricing:
    """Resolve against the built-in table."""
    return _default_resolver.resolve(model_name)
