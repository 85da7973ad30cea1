"""Phantom billing detection: billing for services that were never rendered.

Four independent sub-analyses run over a provider's recent claims:

* volume: units billed per service date against the provider type's
  daily capacity
* geographic: patient locations against the provider's registered location
* time conflict: overlapping same-day claims adding up to more than a
  working day of units
* patient pattern: new-patient ratio, incomplete demographics and age
  outliers

Their outputs form the context the phantom billing patterns are evaluated
against. A sub-analysis that lacks data reports it instead of failing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..models import Claim, FraudAlert, FraudType, PatientRecord, ProviderType, RiskLevel
from ..store.base import ClaimStore
from .history import ClaimHistory, ClaimHistoryLoader
from .models import PatternHit, PatternRule
from .registry import PatternRegistry, evaluate_patterns
from .thresholds import ALERT_SEVERITY_THRESHOLDS, PHANTOM_BILLING_THRESHOLDS

logger = logging.getLogger(__name__)

NO_CLAIMS_RECOMMENDATION = "No claims data available for analysis"
EARTH_RADIUS_MILES = 3958.8

# Units a provider type can plausibly deliver in one day
DAILY_CAPACITY: dict[ProviderType, int] = {
    ProviderType.PHYSICIAN: 32,
    ProviderType.HOSPITAL: 200,
    ProviderType.CLINIC: 80,
    ProviderType.LABORATORY: 150,
    ProviderType.THERAPIST: 24,
    ProviderType.DME: 50,
}
DEFAULT_DAILY_CAPACITY = 32

AGE_BUCKETS: tuple[tuple[str, int, int], ...] = (
    ("0-18", 0, 18),
    ("19-35", 19, 35),
    ("36-50", 36, 50),
    ("51-65", 51, 65),
    ("66-80", 66, 80),
    ("80+", 81, 150),
)


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in miles."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


def daily_capacity(provider_type: ProviderType | None) -> int:
    if provider_type is None:
        return DEFAULT_DAILY_CAPACITY
    return DAILY_CAPACITY.get(provider_type, DEFAULT_DAILY_CAPACITY)


@dataclass(frozen=True)
class VolumeAnalysis:
    max_daily_capacity: int
    max_claimed_volume: int
    volume_exceeded: bool
    excess_percentage: float
    suspicious_dates: list[date] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_daily_capacity": self.max_daily_capacity,
            "max_claimed_volume": self.max_claimed_volume,
            "volume_exceeded": self.volume_exceeded,
            "excess_percentage": round(self.excess_percentage, 1),
            "suspicious_dates": [d.isoformat() for d in self.suspicious_dates],
        }


@dataclass(frozen=True)
class GeographicAnalysis:
    provider_location_available: bool
    suspicious_locations: list[dict[str, Any]] = field(default_factory=list)
    max_distance: float = 0.0
    anomalies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_location_available": self.provider_location_available,
            "suspicious_locations": list(self.suspicious_locations),
            "max_distance": round(self.max_distance, 1),
            "anomalies": list(self.anomalies),
        }


@dataclass(frozen=True)
class TimeConflictAnalysis:
    conflicting_dates: list[dict[str, Any]] = field(default_factory=list)
    conflict_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflicting_dates": list(self.conflicting_dates),
            "conflict_score": self.conflict_score,
        }


@dataclass(frozen=True)
class PatientAnalysis:
    total_patients: int = 0
    new_patient_ratio: float = 0.0
    returning_patient_ratio: float = 0.0
    age_distribution: dict[str, int] = field(default_factory=dict)
    suspicious_patterns: list[str] = field(default_factory=list)
    identity_flags: list[str] = field(default_factory=list)
    insufficient_data: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_patients": self.total_patients,
            "new_patient_ratio": round(self.new_patient_ratio, 3),
            "returning_patient_ratio": round(self.returning_patient_ratio, 3),
            "age_distribution": dict(self.age_distribution),
            "suspicious_patterns": list(self.suspicious_patterns),
            "identity_flags": list(self.identity_flags),
            "insufficient_data": self.insufficient_data,
        }


@dataclass(frozen=True)
class PhantomBillingContext:
    volume: VolumeAnalysis
    geographic: GeographicAnalysis
    time_conflict: TimeConflictAnalysis
    patients: PatientAnalysis
    config: ScoringConfig = DEFAULT_SCORING_CONFIG


def analyze_volume(history: ClaimHistory) -> VolumeAnalysis:
    provider_type = history.provider.provider_type if history.provider else None
    capacity = daily_capacity(provider_type)
    units_by_date = history.units_by_service_date()
    max_volume = max(units_by_date.values(), default=0)
    suspicious = sorted(d for d, units in units_by_date.items() if units > capacity)
    excess = (max_volume - capacity) / capacity * 100 if capacity else 0.0
    return VolumeAnalysis(
        max_daily_capacity=capacity,
        max_claimed_volume=max_volume,
        volume_exceeded=bool(suspicious),
        excess_percentage=max(0.0, excess),
        suspicious_dates=suspicious,
    )


def analyze_geography(history: ClaimHistory, config: ScoringConfig) -> GeographicAnalysis:
    provider = history.provider
    if provider is None or not provider.has_location:
        return GeographicAnalysis(
            provider_location_available=False,
            anomalies=["Provider location not available"],
        )

    suspicious: list[dict[str, Any]] = []
    max_distance = 0.0
    for claim in history.claims:
        patient = history.patients.get(claim.patient_id)
        if patient is None:
            continue
        distance = None
        if patient.has_location:
            distance = distance_miles(
                provider.latitude, provider.longitude, patient.latitude, patient.longitude
            )
            max_distance = max(max_distance, distance)
        city_mismatch = bool(
            patient.city and provider.city and patient.city.strip().lower() != provider.city.strip().lower()
        )
        if city_mismatch or (distance is not None and distance > config.service_radius_miles):
            suspicious.append({
                "claim_id": claim.id,
                "patient_id": claim.patient_id,
                "patient_city": patient.city,
                "distance": round(distance, 1) if distance is not None else None,
            })

    anomalies: list[str] = []
    if history.claims and len(suspicious) > len(history.claims) * 0.3:
        anomalies.append("High percentage of out-of-area services")

    return GeographicAnalysis(
        provider_location_available=True,
        suspicious_locations=suspicious,
        max_distance=max_distance,
        anomalies=anomalies,
    )


def analyze_time_conflicts(history: ClaimHistory, config: ScoringConfig) -> TimeConflictAnalysis:
    conflicts: list[dict[str, Any]] = []
    for service_date, claims in sorted(history.claims_by_service_date().items()):
        if len(claims) < 2:
            continue
        units = sum(c.total_units for c in claims)
        # One unit approximates one hour of service
        if units > config.daily_unit_hours_max:
            conflicts.append({
                "service_date": service_date.isoformat(),
                "claims": len(claims),
                "units": units,
            })
    return TimeConflictAnalysis(
        conflicting_dates=conflicts,
        conflict_score=90.0 if conflicts else 0.0,
    )


def _age_distribution(patients: list[PatientRecord], as_of: date) -> dict[str, int]:
    distribution = {label: 0 for label, _, _ in AGE_BUCKETS}
    for patient in patients:
        age = patient.age(as_of)
        if age is None:
            continue
        for label, low, high in AGE_BUCKETS:
            if low <= age <= high:
                distribution[label] += 1
                break
    return distribution


def analyze_patients(history: ClaimHistory, config: ScoringConfig) -> PatientAnalysis:
    claims_per_patient = history.claims_per_patient()
    total = len(claims_per_patient)
    if total == 0:
        return PatientAnalysis(insufficient_data=True)

    new_patients = sum(1 for count in claims_per_patient.values() if count == 1)
    new_ratio = new_patients / total
    as_of = history.as_of.date()
    records = [history.patients[pid] for pid in claims_per_patient if pid in history.patients]
    distribution = _age_distribution(records, as_of)

    if total < config.min_patient_sample:
        return PatientAnalysis(
            total_patients=total,
            new_patient_ratio=new_ratio,
            returning_patient_ratio=1 - new_ratio,
            age_distribution=distribution,
            insufficient_data=True,
        )

    suspicious: list[str] = []
    identity_flags: list[str] = []

    if new_ratio > 0.8:
        suspicious.append("Unusually high new patient ratio")

    if records:
        incomplete = sum(1 for p in records if not p.has_complete_demographics)
        if incomplete > len(records) * 0.2:
            identity_flags.append("High percentage of patients with incomplete information")

        very_elderly = sum(1 for p in records if (p.age(as_of) or 0) > 95)
        if very_elderly > len(records) * 0.1:
            suspicious.append("Unusual concentration of very elderly patients")

    return PatientAnalysis(
        total_patients=total,
        new_patient_ratio=new_ratio,
        returning_patient_ratio=1 - new_ratio,
        age_distribution=distribution,
        suspicious_patterns=suspicious,
        identity_flags=identity_flags,
    )


def _impossible_volume(ctx: PhantomBillingContext) -> bool:
    return ctx.volume.volume_exceeded and ctx.volume.excess_percentage > 50


def _geographic_anomaly(ctx: PhantomBillingContext) -> bool:
    return (
        len(ctx.geographic.suspicious_locations) > ctx.config.geographic_suspicious_count_max
        or ctx.geographic.max_distance > ctx.config.geographic_distance_max
    )


def _time_conflict(ctx: PhantomBillingContext) -> bool:
    return ctx.time_conflict.conflict_score > 70


def _patient_identity_fraud(ctx: PhantomBillingContext) -> bool:
    if ctx.patients.insufficient_data:
        return False
    return bool(ctx.patients.identity_flags) or ctx.patients.new_patient_ratio > 0.9


def _pattern_anomaly(ctx: PhantomBillingContext) -> bool:
    return len(ctx.patients.suspicious_patterns) >= 2


PHANTOM_BILLING_PATTERNS: tuple[PatternRule, ...] = (
    PatternRule(
        "IMPOSSIBLE_VOLUME",
        "Provider claims impossible number of services per day",
        95,
        _impossible_volume,
        ("Units per day above provider capacity",),
    ),
    PatternRule(
        "GEOGRAPHIC_ANOMALY",
        "Services billed from impossible locations",
        85,
        _geographic_anomaly,
        ("Patients far outside the service area",),
    ),
    PatternRule(
        "TIME_CONFLICT",
        "Overlapping service times that are physically impossible",
        90,
        _time_conflict,
        ("Same-day claims exceeding a working day",),
    ),
    PatternRule(
        "PATIENT_IDENTITY_FRAUD",
        "Suspicious patient demographics or identity patterns",
        75,
        _patient_identity_fraud,
        ("Incomplete patient demographics", "Mostly one-time patients"),
    ),
    PatternRule(
        "PATTERN_ANOMALY",
        "Billing patterns deviate from normal provider behavior",
        70,
        _pattern_anomaly,
        ("Multiple suspicious patient patterns",),
    ),
)

_PATTERN_RECOMMENDATIONS = {
    "IMPOSSIBLE_VOLUME": "Conduct capacity audit",
    "GEOGRAPHIC_ANOMALY": "Geographic verification required",
    "TIME_CONFLICT": "Schedule verification needed",
    "PATIENT_IDENTITY_FRAUD": "Patient identity verification audit",
}


def build_phantom_billing_registry() -> PatternRegistry:
    return PatternRegistry(PHANTOM_BILLING_PATTERNS)


@dataclass
class PhantomBillingResult:
    provider_id: str
    is_phantom_billing: bool
    confidence: float
    risk_level: RiskLevel
    patterns: list[PatternHit] = field(default_factory=list)
    volume: VolumeAnalysis | None = None
    geographic: GeographicAnalysis | None = None
    time_conflict: TimeConflictAnalysis | None = None
    patients: PatientAnalysis | None = None
    recommendations: list[str] = field(default_factory=list)
    audit_triggers: list[str] = field(default_factory=list)

    def _analyses(self) -> dict[str, Any]:
        return {
            "volume": self.volume.to_dict() if self.volume else None,
            "geographic": self.geographic.to_dict() if self.geographic else None,
            "time_conflict": self.time_conflict.to_dict() if self.time_conflict else None,
            "patients": self.patients.to_dict() if self.patients else None,
        }

    def to_alert(self) -> FraudAlert:
        names = ", ".join(hit.pattern_id for hit in self.patterns) or "none"
        return FraudAlert(
            type=FraudType.PHANTOM_BILLING,
            severity=ALERT_SEVERITY_THRESHOLDS.level(self.confidence),
            confidence=self.confidence,
            description=f"Phantom billing patterns detected: {names}",
            details={
                "patterns": [hit.to_dict() for hit in self.patterns],
                "audit_triggers": list(self.audit_triggers),
                **self._analyses(),
            },
            detection_model="PhantomBillingDetector-v1",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "is_phantom_billing": self.is_phantom_billing,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "patterns": [hit.to_dict() for hit in self.patterns],
            "recommendations": list(self.recommendations),
            "audit_triggers": list(self.audit_triggers),
            **self._analyses(),
        }


def _recommendations(patterns: list[PatternHit], ctx: PhantomBillingContext) -> list[str]:
    recommendations: list[str] = []
    if ctx.volume.volume_exceeded:
        recommendations.append("Verify provider schedule and capacity")
        recommendations.append("Audit time and attendance records")
    if ctx.geographic.suspicious_locations:
        recommendations.append("Verify service locations and patient addresses")
        recommendations.append("Check for travel time feasibility")
    if ctx.time_conflict.conflict_score > 70:
        recommendations.append("Review appointment scheduling system")
        recommendations.append("Verify actual service times")
    if ctx.patients.identity_flags:
        recommendations.append("Verify patient identities and documentation")
        recommendations.append("Check for stolen patient information")
    for hit in patterns:
        recommendation = _PATTERN_RECOMMENDATIONS.get(hit.pattern_id)
        if recommendation:
            recommendations.append(recommendation)
    return recommendations


def _audit_triggers(patterns: list[PatternHit], confidence: float) -> list[str]:
    triggers: list[str] = []
    if confidence >= 85:
        triggers.extend(["IMMEDIATE_INVESTIGATION_REQUIRED", "PAYMENT_SUSPENSION"])
    elif confidence >= 70:
        triggers.extend(["URGENT_AUDIT", "ENHANCED_MONITORING"])
    triggers.extend(hit.audit_trigger for hit in patterns)
    return triggers


class PhantomBillingDetector:
    """Checks volume feasibility, geography, time conflicts and patient patterns."""

    def __init__(
        self,
        store: ClaimStore | None = None,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        registry: PatternRegistry | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.registry = registry or build_phantom_billing_registry()

    def detect(
        self,
        provider_id: str,
        lookback_days: int | None = None,
        as_of: datetime | None = None,
    ) -> PhantomBillingResult:
        if self.store is None:
            raise RuntimeError("PhantomBillingDetector.detect() needs a claim store")
        history = ClaimHistoryLoader(self.store).load(
            provider_id, lookback_days or self.config.phantom_lookback_days, as_of
        )
        return self.analyze_history(history, lookback_days)

    def analyze_history(
        self, history: ClaimHistory, lookback_days: int | None = None
    ) -> PhantomBillingResult:
        history = history.window(lookback_days or self.config.phantom_lookback_days)
        if history.is_empty:
            return PhantomBillingResult(
                provider_id=history.provider_id,
                is_phantom_billing=False,
                confidence=0.0,
                risk_level=RiskLevel.LOW,
                recommendations=[NO_CLAIMS_RECOMMENDATION],
            )

        context = PhantomBillingContext(
            volume=analyze_volume(history),
            geographic=analyze_geography(history, self.config),
            time_conflict=analyze_time_conflicts(history, self.config),
            patients=analyze_patients(history, self.config),
            config=self.config,
        )
        pattern_result = evaluate_patterns(self.registry, context, self.config.pattern_overrides)
        confidence = pattern_result.confidence

        logger.debug(
            f"Phantom billing analysis for {history.provider_id}: "
            f"patterns={pattern_result.pattern_ids} confidence={confidence:.1f}"
        )
        return PhantomBillingResult(
            provider_id=history.provider_id,
            is_phantom_billing=confidence > self.config.phantom_positive_min,
            confidence=confidence,
            risk_level=PHANTOM_BILLING_THRESHOLDS.level(confidence),
            patterns=pattern_result.hits,
            volume=context.volume,
            geographic=context.geographic,
            time_conflict=context.time_conflict,
            patients=context.patients,
            recommendations=_recommendations(pattern_result.hits, context),
            audit_triggers=_audit_triggers(pattern_result.hits, confidence),
        )

    def analyze_claim(self, claim: Claim) -> PhantomBillingResult:
        """Run the sub-analyses over a single claim in isolation."""
        provider = self.store.get_provider(claim.provider_id) if self.store else None
        patient = self.store.get_patient(claim.patient_id) if self.store else None
        history = ClaimHistory(
            provider_id=claim.provider_id,
            as_of=claim.created_at,
            lookback_days=self.config.phantom_lookback_days,
            provider=provider,
            claims=(claim,),
            patients={patient.id: patient} if patient else {},
        )
        return self.analyze_history(history)
