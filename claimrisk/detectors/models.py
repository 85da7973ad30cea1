"""Data models shared by the fraud-pattern detectors."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PatternHit:
    """A fraud pattern that matched during one detection run."""

    pattern_id: str
    description: str
    weight: float
    indicators: tuple[str, ...] = ()

    @property
    def audit_trigger(self) -> str:
        return f"{self.pattern_id.upper()}_DETECTED"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern_id,
            "description": self.description,
            "risk_score": self.weight,
            "indicators": list(self.indicators),
        }


PatternPredicate = Callable[[Any], bool]

# Each matched pattern beyond the strongest adds this much confidence
ADDITIONAL_PATTERN_BONUS = 5.0


@dataclass(frozen=True)
class PatternRule:
    """Data-described fraud pattern evaluated against a detector context."""

    pattern_id: str
    description: str
    weight: float
    predicate: PatternPredicate
    indicators: tuple[str, ...] = ()

    def evaluate(self, context: Any) -> PatternHit | None:
        if not self.predicate(context):
            return None
        return PatternHit(
            pattern_id=self.pattern_id,
            description=self.description,
            weight=self.weight,
            indicators=self.indicators,
        )


@dataclass
class PatternResult:
    """Container for the pattern hits of one detection run."""

    hits: list[PatternHit] = field(default_factory=list)

    def add_hit(self, hit: PatternHit) -> None:
        self.hits.append(hit)

    @property
    def confidence(self) -> float:
        """Strongest matched weight plus a bonus per additional match, capped at 100.

        Matching one more pattern never lowers the confidence.
        """
        if not self.hits:
            return 0.0
        strongest = max(hit.weight for hit in self.hits)
        return min(100.0, strongest + ADDITIONAL_PATTERN_BONUS * (len(self.hits) - 1))

    def matched(self, pattern_id: str) -> bool:
        return any(hit.pattern_id == pattern_id for hit in self.hits)

    @property
    def pattern_ids(self) -> list[str]:
        return [hit.pattern_id for hit in self.hits]
