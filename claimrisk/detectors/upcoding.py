"""Upcoding detection over a provider's coding profile.

A provider's recent claims are reduced to a coding profile (average E&M
complexity, share of level 4-5 E&M codes, modifier histogram and a
deviation score against the specialty benchmark). Five named patterns are
then evaluated against the profile and the claims behind it.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from ..billing import (
    E_AND_M_COMPLEXITY,
    HIGH_LEVEL_E_AND_M,
    PROCEDURE_CODES,
    check_upcoding_risk,
    higher_level_codes,
    validate_code_combination,
)
from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..models import Claim, FraudAlert, FraudType, RiskLevel
from ..store.base import ClaimStore
from .history import ClaimHistory, ClaimHistoryLoader
from .models import PatternHit, PatternRule
from .registry import PatternRegistry, evaluate_patterns
from .thresholds import ALERT_SEVERITY_THRESHOLDS, UPCODING_THRESHOLDS

logger = logging.getLogger(__name__)

NO_CLAIMS_RECOMMENDATION = "No claims data available for analysis"
DEFAULT_COMPLEXITY = 3.0


@dataclass(frozen=True)
class SpecialtyBenchmark:
    specialty: str
    average_complexity: float
    typical_modifiers: frozenset[str]


SPECIALTY_BENCHMARKS: dict[str, SpecialtyBenchmark] = {
    "GENERAL_PRACTICE": SpecialtyBenchmark("GENERAL_PRACTICE", 3.2, frozenset({"25", "59"})),
    "INTERNAL_MEDICINE": SpecialtyBenchmark("INTERNAL_MEDICINE", 3.5, frozenset({"25", "57"})),
    "CARDIOLOGY": SpecialtyBenchmark("CARDIOLOGY", 4.0, frozenset({"26", "59"})),
    "ORTHOPEDICS": SpecialtyBenchmark("ORTHOPEDICS", 3.8, frozenset({"59", "78"})),
}


def specialty_benchmark(specialty: str | None) -> SpecialtyBenchmark:
    return SPECIALTY_BENCHMARKS.get(
        (specialty or "").upper(), SPECIALTY_BENCHMARKS["GENERAL_PRACTICE"]
    )


@dataclass(frozen=True)
class ProviderCodingProfile:
    provider_id: str
    total_claims: int
    average_complexity: float
    high_level_frequency: float
    modifier_usage: dict[str, int]
    benchmark: SpecialtyBenchmark
    deviation_score: float
    code_frequencies: dict[str, float] = field(default_factory=dict)
    top_of_family_frequency: float = 0.0
    code_mix_risk: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "total_claims": self.total_claims,
            "average_complexity": round(self.average_complexity, 2),
            "high_level_frequency": round(self.high_level_frequency, 3),
            "modifier_usage": dict(self.modifier_usage),
            "specialty": self.benchmark.specialty,
            "specialty_average_complexity": self.benchmark.average_complexity,
            "deviation_score": self.deviation_score,
            "top_of_family_frequency": round(self.top_of_family_frequency, 3),
            "code_mix_risk": self.code_mix_risk,
        }


def deviation_score(
    average_complexity: float,
    high_level_frequency: float,
    modifier_usage: dict[str, int],
    benchmark: SpecialtyBenchmark,
) -> float:
    """Distance of a coding profile from its specialty benchmark (0-100)."""
    score = min(40.0, abs(average_complexity - benchmark.average_complexity) * 20)
    if high_level_frequency > 0.4:
        score += 30
    unusual_modifiers = [m for m in modifier_usage if m not in benchmark.typical_modifiers]
    score += 10 * len(unusual_modifiers)
    return min(100.0, score)


def build_coding_profile(
    provider_id: str, specialty: str | None, claims: Sequence[Claim]
) -> ProviderCodingProfile:
    line_items = [item for claim in claims for item in claim.line_items]
    em_codes = [item.procedure_code for item in line_items if item.procedure_code in E_AND_M_COMPLEXITY]

    if em_codes:
        average_complexity = sum(E_AND_M_COMPLEXITY[code] for code in em_codes) / len(em_codes)
        high_level_frequency = sum(1 for code in em_codes if code in HIGH_LEVEL_E_AND_M) / len(em_codes)
        top_of_family = sum(1 for code in em_codes if not higher_level_codes(code))
        top_of_family_frequency = top_of_family / len(em_codes)
    else:
        average_complexity = DEFAULT_COMPLEXITY
        high_level_frequency = 0.0
        top_of_family_frequency = 0.0

    modifier_usage = dict(Counter(m for item in line_items for m in item.modifiers))

    code_counts = Counter(item.procedure_code for item in line_items)
    total_lines = len(line_items)
    code_frequencies = (
        {code: count / total_lines for code, count in code_counts.items()} if total_lines else {}
    )

    benchmark = specialty_benchmark(specialty)
    return ProviderCodingProfile(
        provider_id=provider_id,
        total_claims=len(claims),
        average_complexity=average_complexity,
        high_level_frequency=high_level_frequency,
        modifier_usage=modifier_usage,
        benchmark=benchmark,
        deviation_score=deviation_score(
            average_complexity, high_level_frequency, modifier_usage, benchmark
        ),
        code_frequencies=code_frequencies,
        top_of_family_frequency=top_of_family_frequency,
        code_mix_risk=check_upcoding_risk(code_frequencies),
    )


@dataclass(frozen=True)
class UpcodingContext:
    profile: ProviderCodingProfile
    claims: tuple[Claim, ...]


def _consistent_high_level(ctx: UpcodingContext) -> bool:
    return ctx.profile.high_level_frequency > 0.6 and ctx.profile.average_complexity > 4.2


def _time_documentation_mismatch(ctx: UpcodingContext) -> bool:
    # Billed cost well above the typical range is a proxy for billed time
    # not matching documented complexity
    for claim in ctx.claims:
        for item in claim.line_items:
            entry = PROCEDURE_CODES.get(item.procedure_code)
            if entry and float(item.total_cost) > entry.typical_range.max * 1.5:
                return True
    return False


def _modifier_abuse(ctx: UpcodingContext) -> bool:
    usage = ctx.profile.modifier_usage
    total = sum(usage.values())
    if total == 0:
        return False
    if usage.get("59", 0) / total > 0.3:
        return True
    return usage.get("25", 0) / total > 0.4


def _specialty_deviation(ctx: UpcodingContext) -> bool:
    return ctx.profile.deviation_score > 70


def _bundling_evasion(ctx: UpcodingContext) -> bool:
    return any(
        validate_code_combination(claim.procedure_codes).risk_score > 70 for claim in ctx.claims
    )


UPCODING_PATTERNS: tuple[PatternRule, ...] = (
    PatternRule(
        "CONSISTENT_HIGH_LEVEL",
        "Provider consistently bills highest level E&M codes",
        75,
        _consistent_high_level,
        ("High percentage of level 4-5 E&M codes", "Minimal use of lower level codes"),
    ),
    PatternRule(
        "TIME_DOCUMENTATION_MISMATCH",
        "Billed time does not match documented complexity",
        80,
        _time_documentation_mismatch,
        ("Short visits billed at high complexity", "Billed cost above typical range"),
    ),
    PatternRule(
        "MODIFIER_ABUSE",
        "Excessive use of modifiers to increase reimbursement",
        65,
        _modifier_abuse,
        ("High frequency of modifier 25", "Inappropriate modifier 59 usage"),
    ),
    PatternRule(
        "SPECIALTY_DEVIATION",
        "Coding patterns deviate significantly from specialty norms",
        70,
        _specialty_deviation,
        ("Complexity far above specialty average", "Unusual modifiers for specialty"),
    ),
    PatternRule(
        "BUNDLING_EVASION",
        "Using modifiers to bypass bundling rules",
        85,
        _bundling_evasion,
        ("High-risk code combinations on one claim", "Component codes billed separately"),
    ),
)


def build_upcoding_registry() -> PatternRegistry:
    return PatternRegistry(UPCODING_PATTERNS)


@dataclass
class UpcodingResult:
    provider_id: str
    is_upcoding: bool
    confidence: float
    risk_level: RiskLevel
    patterns: list[PatternHit] = field(default_factory=list)
    profile: ProviderCodingProfile | None = None
    recommendations: list[str] = field(default_factory=list)
    audit_triggers: list[str] = field(default_factory=list)

    def to_alert(self) -> FraudAlert:
        names = ", ".join(hit.pattern_id for hit in self.patterns) or "none"
        return FraudAlert(
            type=FraudType.UPCODING,
            severity=ALERT_SEVERITY_THRESHOLDS.level(self.confidence),
            confidence=self.confidence,
            description=f"Upcoding patterns detected: {names}",
            details={
                "patterns": [hit.to_dict() for hit in self.patterns],
                "profile": self.profile.to_dict() if self.profile else None,
                "audit_triggers": list(self.audit_triggers),
            },
            detection_model="UpcodingDetector-v1",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "is_upcoding": self.is_upcoding,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "patterns": [hit.to_dict() for hit in self.patterns],
            "profile": self.profile.to_dict() if self.profile else None,
            "recommendations": list(self.recommendations),
            "audit_triggers": list(self.audit_triggers),
        }


def _recommendations(patterns: Sequence[PatternHit], profile: ProviderCodingProfile) -> list[str]:
    matched = {hit.pattern_id for hit in patterns}
    recommendations: list[str] = []
    if "CONSISTENT_HIGH_LEVEL" in matched:
        recommendations.append("Review medical record documentation for high-level E&M codes")
        recommendations.append("Audit time spent with patients versus billed complexity")
    if "MODIFIER_ABUSE" in matched:
        recommendations.append("Review modifier usage for medical necessity")
        recommendations.append("Educate on appropriate modifier application")
    if "BUNDLING_EVASION" in matched:
        recommendations.append("Review bundling rules and appropriate use of modifier 59")
        recommendations.append("Consider compliance review for procedure coding")
    if profile.deviation_score > 70:
        recommendations.append("Compare coding patterns with specialty peers")
        recommendations.append("Consider external coding audit")
    return recommendations


def _audit_triggers(patterns: Sequence[PatternHit], confidence: float) -> list[str]:
    triggers: list[str] = []
    if confidence >= 80:
        triggers.extend(["IMMEDIATE_AUDIT_REQUIRED", "SUSPEND_PAYMENTS"])
    elif confidence >= 60:
        triggers.extend(["ENHANCED_MONITORING", "DOCUMENTATION_REQUEST"])
    triggers.extend(hit.audit_trigger for hit in patterns)
    return triggers


class UpcodingDetector:
    """Profiles provider coding and flags coding-level inflation."""

    def __init__(
        self,
        store: ClaimStore | None = None,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        registry: PatternRegistry | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.registry = registry or build_upcoding_registry()

    def detect(
        self,
        provider_id: str,
        lookback_days: int | None = None,
        as_of: datetime | None = None,
    ) -> UpcodingResult:
        if self.store is None:
            raise RuntimeError("UpcodingDetector.detect() needs a claim store")
        history = ClaimHistoryLoader(self.store).load(
            provider_id, lookback_days or self.config.upcoding_lookback_days, as_of
        )
        return self.analyze_history(history, lookback_days)

    def analyze_history(self, history: ClaimHistory, lookback_days: int | None = None) -> UpcodingResult:
        history = history.window(lookback_days or self.config.upcoding_lookback_days)
        if history.is_empty:
            return self._empty_result(history.provider_id)
        specialty = history.provider.specialty if history.provider else None
        return self._analyze(history.provider_id, specialty, history.claims)

    def analyze_claim(self, claim: Claim, specialty: str | None = None) -> UpcodingResult:
        """Evaluate a single claim against a profile built from that claim alone."""
        if specialty is None and self.store is not None:
            provider = self.store.get_provider(claim.provider_id)
            specialty = provider.specialty if provider else None
        return self._analyze(claim.provider_id, specialty, (claim,))

    def _analyze(
        self, provider_id: str, specialty: str | None, claims: Sequence[Claim]
    ) -> UpcodingResult:
        profile = build_coding_profile(provider_id, specialty, claims)
        context = UpcodingContext(profile=profile, claims=tuple(claims))
        pattern_result = evaluate_patterns(self.registry, context, self.config.pattern_overrides)
        confidence = pattern_result.confidence

        logger.debug(
            f"Upcoding analysis for {provider_id}: patterns={pattern_result.pattern_ids} "
            f"confidence={confidence:.1f}"
        )
        return UpcodingResult(
            provider_id=provider_id,
            is_upcoding=confidence > self.config.upcoding_positive_min,
            confidence=confidence,
            risk_level=UPCODING_THRESHOLDS.level(confidence),
            patterns=pattern_result.hits,
            profile=profile,
            recommendations=_recommendations(pattern_result.hits, profile),
            audit_triggers=_audit_triggers(pattern_result.hits, confidence),
        )

    @staticmethod
    def _empty_result(provider_id: str) -> UpcodingResult:
        return UpcodingResult(
            provider_id=provider_id,
            is_upcoding=False,
            confidence=0.0,
            risk_level=RiskLevel.LOW,
            recommendations=[NO_CLAIMS_RECOMMENDATION],
        )
