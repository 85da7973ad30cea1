"""Billing code validation: known codes, modifiers and code combinations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .codes import (
    BUNDLING_RISK_WEIGHTS,
    HIGH_RISK_COMBINATIONS,
    PROCEDURE_CODES,
    UNLISTED_CODES,
    PriceRange,
)


@dataclass(frozen=True)
class CodeCombinationResult:
    is_valid: bool
    warnings: list[str] = field(default_factory=list)
    risk_score: int = 0


def _canonical(codes: Iterable[str]) -> tuple[str, ...]:
    return tuple(sorted({code.strip() for code in codes if code and code.strip()}))


def is_known_code(code: str) -> bool:
    return code in PROCEDURE_CODES


def modifier_allowed(code: str, modifier: str) -> bool:
    entry = PROCEDURE_CODES.get(code)
    return entry is not None and modifier in entry.modifiers


def is_unusual_code(code: str) -> bool:
    return code in UNLISTED_CODES


def typical_range(code: str) -> PriceRange | None:
    entry = PROCEDURE_CODES.get(code)
    return entry.typical_range if entry else None


def higher_level_codes(code: str) -> tuple[str, ...]:
    entry = PROCEDURE_CODES.get(code)
    return entry.higher_level_codes if entry else ()


def bundling_risk_weight(tier: str) -> int:
    return BUNDLING_RISK_WEIGHTS.get(tier, 0)


def check_unbundling_risk(codes: Iterable[str]) -> int:
    """Sum bundling weights over co-billed bundled-code pairs, capped at 100.

    Each unordered pair is counted once even if both codes list the other.
    """
    code_set = set(_canonical(codes))
    checked: set[tuple[str, str]] = set()
    risk_score = 0

    for code in sorted(code_set):
        entry = PROCEDURE_CODES.get(code)
        if entry is None:
            continue
        for bundled in sorted(entry.bundled_codes):
            if bundled not in code_set:
                continue
            pair = tuple(sorted((code, bundled)))
            if pair in checked:
                continue
            checked.add(pair)
            risk_score += bundling_risk_weight(entry.unbundling_risk)

    return min(risk_score, 100)


def check_upcoding_risk(code_frequencies: Mapping[str, float]) -> int:
    """Score a provider's code mix for upcoding exposure.

    code_frequencies maps a procedure code to its share of the provider's
    services (0-1).
    """
    risk_score = 0
    for code, frequency in code_frequencies.items():
        entry = PROCEDURE_CODES.get(code)
        if entry is None:
            continue
        # Highest level of its family billed too often
        if not entry.higher_level_codes and frequency > 0.3:
            risk_score += 30
        if "HIGH_FREQUENCY" in entry.risk_factors and frequency > 0.5:
            risk_score += 25
    return min(risk_score, 100)


def validate_code_combination(codes: Iterable[str]) -> CodeCombinationResult:
    """Validate the procedure codes billed together on one claim.

    Flags curated high-risk combinations and a high aggregate unbundling
    risk. The result does not depend on the order of the input codes.
    """
    code_set = set(_canonical(codes))
    warnings: list[str] = []
    risk_score = 0

    for combination in HIGH_RISK_COMBINATIONS:
        if combination.codes <= code_set:
            warnings.append(combination.description)
            risk_score = max(risk_score, combination.risk_score)

    unbundling_risk = check_unbundling_risk(code_set)
    if unbundling_risk > 50:
        warnings.append("High unbundling risk detected")
        risk_score = max(risk_score, unbundling_risk)

    return CodeCombinationResult(
        is_valid=not warnings,
        warnings=warnings,
        risk_score=risk_score,
    )
