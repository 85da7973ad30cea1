"""Risk factor extraction for the five scoring dimensions.

Each dimension has an extractor that turns claim history into plain
factors and a scorer that maps the factors to a 0-100 sub-score. The
engine clamps every sub-score independently.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence

import numpy as np

from ..billing import is_unusual_code, validate_code_combination
from ..config import ScoringConfig
from ..detectors.phantom import distance_miles
from ..models import Claim, PatientRecord, ProviderRecord
from ..network.models import ProviderNetworkProfile

HIGH_RISK_MODIFIERS = frozenset({"59", "25"})


@dataclass(frozen=True)
class ProviderHistoryFactors:
    total_claims: int = 0
    flagged_claims: int = 0
    flag_rate: float = 0.0
    average_claim_value: float = 0.0
    risk_trend: str = "STABLE"


@dataclass(frozen=True)
class ClaimFactors:
    total_amount: float = 0.0
    complexity: int = 0
    unusual_codes: tuple[str, ...] = ()
    bundling_risk: float = 0.0


@dataclass(frozen=True)
class PatientFactors:
    age: int | None = None
    new_patient: bool = False
    visit_frequency: int = 0
    geographic_anomalies: int = 0


@dataclass(frozen=True)
class NetworkFactors:
    suspicious_connections: int = 0
    cluster_membership: bool = False
    fraud_ring_indicators: tuple[str, ...] = ()
    referral_anomalies: int = 0


@dataclass(frozen=True)
class BehavioralFactors:
    billing_frequency: int = 0
    time_patterns: float = 0.0
    code_distribution: float = 0.0
    modifier_usage: float = 0.0


@dataclass(frozen=True)
class RiskFactors:
    provider_history: ProviderHistoryFactors = field(default_factory=ProviderHistoryFactors)
    claim: ClaimFactors = field(default_factory=ClaimFactors)
    patient: PatientFactors = field(default_factory=PatientFactors)
    network: NetworkFactors = field(default_factory=NetworkFactors)
    behavioral: BehavioralFactors = field(default_factory=BehavioralFactors)


# Extraction


def risk_trend(
    claims: Sequence[Claim],
    as_of: datetime,
    recent_days: int,
    band: float = 0.1,
    flagged_score_min: float = 70,
) -> str:
    """Compare the recent flag rate with the earlier part of the window."""
    cutoff = as_of - timedelta(days=recent_days)
    recent = [c for c in claims if c.created_at >= cutoff]
    earlier = [c for c in claims if c.created_at < cutoff]
    if not recent or not earlier:
        return "STABLE"
    recent_rate = sum(1 for c in recent if c.counts_as_flagged(flagged_score_min)) / len(recent)
    earlier_rate = sum(1 for c in earlier if c.counts_as_flagged(flagged_score_min)) / len(earlier)
    if recent_rate > earlier_rate + band:
        return "DETERIORATING"
    if recent_rate < earlier_rate - band:
        return "IMPROVING"
    return "STABLE"


def provider_history_factors(
    claims: Sequence[Claim], as_of: datetime, config: ScoringConfig
) -> ProviderHistoryFactors:
    if not claims:
        return ProviderHistoryFactors()
    flagged = sum(1 for c in claims if c.counts_as_flagged(config.flagged_score_min))
    total_billed = sum((c.billed_amount for c in claims), Decimal("0"))
    return ProviderHistoryFactors(
        total_claims=len(claims),
        flagged_claims=flagged,
        flag_rate=flagged / len(claims),
        average_claim_value=float(total_billed / len(claims)),
        risk_trend=risk_trend(
            claims,
            as_of,
            config.recent_activity_days,
            flagged_score_min=config.flagged_score_min,
        ),
    )


def claim_factors(procedure_codes: Sequence[str], total_amount: Decimal, line_count: int) -> ClaimFactors:
    validation = validate_code_combination(procedure_codes)
    return ClaimFactors(
        total_amount=float(total_amount),
        complexity=line_count,
        unusual_codes=tuple(sorted({c for c in procedure_codes if is_unusual_code(c)})),
        bundling_risk=validation.risk_score / 100,
    )


def patient_factors(
    patient: PatientRecord | None,
    patient_claims: Sequence[Claim],
    providers: dict[str, ProviderRecord],
    as_of: datetime,
    config: ScoringConfig,
) -> PatientFactors:
    geographic_anomalies = 0
    if patient is not None and patient.has_location:
        for provider_id in {c.provider_id for c in patient_claims}:
            provider = providers.get(provider_id)
            if provider is None or not provider.has_location:
                continue
            distance = distance_miles(
                patient.latitude, patient.longitude, provider.latitude, provider.longitude
            )
            if distance > config.service_radius_miles:
                geographic_anomalies += 1

    return PatientFactors(
        age=patient.age(as_of.date()) if patient else None,
        new_patient=len(patient_claims) == 1,
        visit_frequency=len(patient_claims),
        geographic_anomalies=geographic_anomalies,
    )


def network_factors(profile: ProviderNetworkProfile) -> NetworkFactors:
    return NetworkFactors(
        suspicious_connections=profile.suspicious_connections,
        cluster_membership=profile.in_cluster,
        fraud_ring_indicators=profile.fraud_rings,
        referral_anomalies=profile.referral_anomalies,
    )


def code_distribution_skew(codes: Sequence[str], min_sample: int) -> float:
    """1 - normalised Shannon entropy of the billed codes (0 = even, 1 = one code)."""
    if len(codes) < min_sample:
        return 0.0
    counts = np.array(list(Counter(codes).values()), dtype=float)
    if counts.size < 2:
        return 1.0
    probabilities = counts / counts.sum()
    entropy = -np.sum(probabilities * np.log(probabilities))
    return float(1.0 - entropy / np.log(counts.size))


def behavioral_factors(
    claims: Sequence[Claim], as_of: datetime, config: ScoringConfig
) -> BehavioralFactors:
    if not claims:
        return BehavioralFactors()

    recent_cutoff = as_of - timedelta(days=config.recent_activity_days)
    billing_frequency = sum(1 for c in claims if c.created_at >= recent_cutoff)

    by_date: dict[object, list[Claim]] = {}
    for claim in claims:
        by_date.setdefault(claim.service_date, []).append(claim)
    conflict_days = sum(
        1 for day_claims in by_date.values()
        if len(day_claims) > 1 and sum(c.total_units for c in day_claims) > config.daily_unit_hours_max
    )

    line_items = [item for c in claims for item in c.line_items]
    modifier_lines = sum(1 for item in line_items if item.modifiers & HIGH_RISK_MODIFIERS)

    return BehavioralFactors(
        billing_frequency=billing_frequency,
        time_patterns=conflict_days / len(by_date),
        code_distribution=code_distribution_skew(
            [item.procedure_code for item in line_items], config.min_patient_sample
        ),
        modifier_usage=modifier_lines / len(line_items) if line_items else 0.0,
    )


# Scoring


def provider_risk(factors: ProviderHistoryFactors) -> float:
    score = factors.flag_rate * 50
    if factors.risk_trend == "DETERIORATING":
        score += 20
    elif factors.risk_trend == "IMPROVING":
        score -= 10
    if factors.average_claim_value > 1000:
        score += 15
    return score


def claim_risk(factors: ClaimFactors) -> float:
    score = 0.0
    if factors.total_amount > 5000:
        score += 30
    elif factors.total_amount > 2000:
        score += 15
    score += min(factors.complexity * 3, 25)
    score += len(factors.unusual_codes) * 10
    score += factors.bundling_risk * 20
    return score


def patient_risk(factors: PatientFactors) -> float:
    score = 0.0
    if factors.age is not None and (factors.age > 85 or factors.age < 1):
        score += 15
    if factors.new_patient:
        score += 10
    if factors.visit_frequency > 50:
        score += 20
    score += factors.geographic_anomalies * 15
    return score


def network_risk(factors: NetworkFactors) -> float:
    score = factors.suspicious_connections * 8.0
    if factors.cluster_membership:
        score += 25
    score += len(factors.fraud_ring_indicators) * 15
    score += factors.referral_anomalies * 10
    return score


def behavioral_risk(factors: BehavioralFactors) -> float:
    score = 0.0
    if factors.billing_frequency > 100:
        score += 20
    score += factors.time_patterns * 15
    score += factors.code_distribution * 15
    score += factors.modifier_usage * 10
    return score
