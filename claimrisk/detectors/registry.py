"""Pattern registry for managing the fraud patterns of a detector."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from .models import PatternResult, PatternRule


class PatternRegistry:
    def __init__(self, patterns: Iterable[PatternRule] = ()) -> None:
        self._patterns: list[PatternRule] = []
        self.extend(patterns)

    def register(self, pattern: PatternRule) -> None:
        if any(p.pattern_id == pattern.pattern_id for p in self._patterns):
            return
        self._patterns.append(pattern)

    def extend(self, patterns: Iterable[PatternRule]) -> None:
        for pattern in patterns:
            self.register(pattern)

    def active_patterns(self) -> Iterable[PatternRule]:
        return tuple(self._patterns)

    def get(self, pattern_id: str) -> PatternRule | None:
        for pattern in self._patterns:
            if pattern.pattern_id == pattern_id:
                return pattern
        return None

    def __len__(self) -> int:
        return len(self._patterns)


def evaluate_patterns(
    registry: PatternRegistry,
    context: Any,
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
) -> PatternResult:
    """Evaluate every active pattern against a detector context.

    overrides maps a pattern id to {"enabled": bool, "weight": float}.
    Disabled patterns are skipped before their predicate runs.
    """
    overrides = overrides or {}
    result = PatternResult()

    for pattern in registry.active_patterns():
        override = overrides.get(pattern.pattern_id)
        if override:
            if not override.get("enabled", True):
                continue
            pattern = replace(pattern, weight=float(override.get("weight", pattern.weight)))
        hit = pattern.evaluate(context)
        if hit is not None:
            result.add_hit(hit)

    return result
