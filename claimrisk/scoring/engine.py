"""Risk scoring engine: weighted aggregation of five risk dimensions.

The engine reads claim history from the store and the provider network
view from the snapshot cache, scores each dimension independently and
combines them with the configured weights. External advisors, when
configured, are blended in under a strict timeout.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..detectors.history import ClaimHistory, ClaimHistoryLoader
from ..detectors.thresholds import RiskThresholds
from ..errors import DataUnavailableError, ExternalModelError
from ..models import Claim, ClaimSubmission, ProviderRecord, RiskLevel
from ..network.models import ProviderNetworkProfile
from ..network.snapshots import NetworkSnapshotCache
from ..store.base import ClaimStore
from . import factors as f
from .advisor import AdvisorScore, ExternalRiskAdvisor

logger = logging.getLogger(__name__)

DIMENSIONS = ("provider", "claim", "patient", "network", "behavioral")


@dataclass
class RiskScore:
    overall_score: float
    confidence: float
    risk_level: RiskLevel
    breakdown: dict[str, float] = field(default_factory=dict)
    key_drivers: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    audit_triggers: list[str] = field(default_factory=list)
    advisor_scores: list[AdvisorScore] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": round(self.overall_score, 2),
            "confidence": round(self.confidence, 2),
            "risk_level": self.risk_level.value,
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
            "key_drivers": list(self.key_drivers),
            "recommendations": list(self.recommendations),
            "audit_triggers": list(self.audit_triggers),
            "advisors": [
                {"model": a.model, "score": a.score, "confidence": a.confidence}
                for a in self.advisor_scores
            ],
        }


@dataclass(frozen=True)
class RealTimeRisk:
    risk_score: float
    risk_level: RiskLevel
    immediate_actions: list[str]
    processing_recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "immediate_actions": list(self.immediate_actions),
            "processing_recommendation": self.processing_recommendation,
        }


def processing_recommendation(risk_level: RiskLevel) -> str:
    if risk_level is RiskLevel.CRITICAL:
        return "INVESTIGATE"
    if risk_level in (RiskLevel.HIGH, RiskLevel.MEDIUM):
        return "MANUAL_REVIEW"
    return "AUTO_APPROVE"


def immediate_actions(risk_level: RiskLevel) -> list[str]:
    if risk_level is RiskLevel.CRITICAL:
        return ["Flag for immediate investigation", "Hold payment"]
    if risk_level is RiskLevel.HIGH:
        return ["Queue for manual review", "Request documentation"]
    return []


def key_drivers(factors: f.RiskFactors, breakdown: dict[str, float]) -> list[str]:
    drivers: list[str] = []
    if factors.provider_history.flag_rate > 0.3:
        drivers.append("High provider flag rate")
    if factors.claim.total_amount > 5000:
        drivers.append("High claim amount")
    if factors.network.suspicious_connections > 5:
        drivers.append("Suspicious network connections")
    if factors.behavioral.billing_frequency > 100:
        drivers.append("Unusual billing frequency")
    for dimension, score in sorted(breakdown.items(), key=lambda item: item[1], reverse=True):
        if score >= 50:
            drivers.append(f"Elevated {dimension} risk")
    return drivers


def recommendations(risk_level: RiskLevel, drivers: Sequence[str]) -> list[str]:
    result: list[str] = []
    if risk_level is RiskLevel.CRITICAL:
        result.extend(["Immediate investigation required", "Consider payment suspension"])
    elif risk_level is RiskLevel.HIGH:
        result.extend(["Manual review required", "Request additional documentation"])
    elif risk_level is RiskLevel.MEDIUM:
        result.append("Enhanced monitoring recommended")

    for driver in drivers:
        if "flag rate" in driver:
            result.append("Review provider history and patterns")
        if "network" in driver:
            result.append("Analyze provider network associations")
        if "frequency" in driver:
            result.append("Verify billing patterns and capacity")
    return list(dict.fromkeys(result))


def audit_triggers(risk_level: RiskLevel, overall_score: float) -> list[str]:
    triggers: list[str] = []
    if risk_level is RiskLevel.CRITICAL:
        triggers.extend(["CRITICAL_RISK_ALERT", "IMMEDIATE_AUDIT_REQUIRED"])
    elif risk_level is RiskLevel.HIGH:
        triggers.extend(["HIGH_RISK_DETECTED", "MANUAL_REVIEW_NEEDED"])
    if overall_score > 90:
        triggers.append("EXTREME_RISK_SCORE")
    return triggers


class RiskScoringEngine:
    """Combines the five risk dimensions into one auditable score."""

    def __init__(
        self,
        store: ClaimStore,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        snapshots: NetworkSnapshotCache | None = None,
        advisors: Iterable[ExternalRiskAdvisor] | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.snapshots = snapshots or NetworkSnapshotCache()
        self.advisors = list(advisors or [])
        self.thresholds = RiskThresholds.from_config(config)

    # Full scoring

    def score_claim(self, claim_id: str, as_of: datetime | None = None) -> RiskScore:
        claim = self.store.get_claim(claim_id)
        if claim is None:
            raise DataUnavailableError("claim", claim_id)
        return self.score(claim, as_of=as_of)

    def score(
        self,
        claim: Claim,
        history: ClaimHistory | None = None,
        as_of: datetime | None = None,
    ) -> RiskScore:
        as_of = as_of or (history.as_of if history else datetime.now(timezone.utc))
        if history is None:
            history = ClaimHistoryLoader(self.store).load(
                claim.provider_id, self.config.scoring_lookback_days, as_of
            )
        history = history.window(self.config.scoring_lookback_days)

        risk_factors = self._extract_factors(claim, history, as_of)
        breakdown = {
            "provider": self._dimension("provider", f.provider_risk, risk_factors.provider_history),
            "claim": self._dimension("claim", f.claim_risk, risk_factors.claim),
            "patient": self._dimension("patient", f.patient_risk, risk_factors.patient),
            "network": self._dimension("network", f.network_risk, risk_factors.network),
            "behavioral": self._dimension("behavioral", f.behavioral_risk, risk_factors.behavioral),
        }

        overall = sum(breakdown[d] * self.config.weight_for(d) for d in DIMENSIONS)
        confidence = self.config.base_confidence

        advisor_scores = self._consult_advisors(claim, breakdown)
        if advisor_scores:
            overall, confidence = self._blend(overall, confidence, advisor_scores)

        overall = RiskThresholds.clamp_score(overall)
        risk_level = self.thresholds.level(overall)
        drivers = key_drivers(risk_factors, breakdown)

        return RiskScore(
            overall_score=overall,
            confidence=confidence,
            risk_level=risk_level,
            breakdown=breakdown,
            key_drivers=drivers,
            recommendations=recommendations(risk_level, drivers),
            audit_triggers=audit_triggers(risk_level, overall),
            advisor_scores=advisor_scores,
        )

    def _extract_factors(self, claim: Claim, history: ClaimHistory, as_of: datetime) -> f.RiskFactors:
        since = as_of - timedelta(days=self.config.scoring_lookback_days)
        extracted: dict[str, Any] = {}

        extractors: dict[str, Callable[[], Any]] = {
            "provider_history": lambda: f.provider_history_factors(history.claims, as_of, self.config),
            "claim": lambda: f.claim_factors(
                claim.procedure_codes, claim.billed_amount, len(claim.line_items)
            ),
            "patient": lambda: self._patient_factors(claim, since, as_of),
            "network": lambda: f.network_factors(self._network_profile(claim)),
            "behavioral": lambda: f.behavioral_factors(history.claims, as_of, self.config),
        }
        for name, extract in extractors.items():
            try:
                extracted[name] = extract()
            except Exception as e:
                logger.warning(f"Risk factor extraction '{name}' failed for claim {claim.id}: {e}")

        return f.RiskFactors(**extracted)

    def _patient_factors(self, claim: Claim, since: datetime, as_of: datetime) -> f.PatientFactors:
        patient = self.store.get_patient(claim.patient_id)
        patient_claims = self.store.patient_claims(claim.patient_id, since, until=as_of)
        providers: dict[str, ProviderRecord] = {}
        for provider_id in {c.provider_id for c in patient_claims}:
            provider = self.store.get_provider(provider_id)
            if provider is not None:
                providers[provider_id] = provider
        return f.patient_factors(patient, patient_claims, providers, as_of, self.config)

    def _network_profile(self, claim: Claim) -> ProviderNetworkProfile:
        return self.snapshots.provider_profile(claim.company_id, claim.provider_id)

    @staticmethod
    def _dimension(name: str, scorer: Callable[[Any], float], factors: Any) -> float:
        try:
            return RiskThresholds.clamp_score(float(scorer(factors)))
        except Exception as e:
            logger.warning(f"Risk dimension '{name}' failed, contributing 0: {e}")
            return 0.0

    # External advisors

    def _consult_advisors(self, claim: Claim, breakdown: dict[str, float]) -> list[AdvisorScore]:
        if not self.advisors:
            return []

        scores: list[AdvisorScore] = []
        executor = ThreadPoolExecutor(max_workers=len(self.advisors))
        try:
            futures = {
                executor.submit(advisor.assess, claim, dict(breakdown)): advisor
                for advisor in self.advisors
            }
            done, _ = wait(futures, timeout=self.config.advisor_timeout_seconds)
            for future, advisor in futures.items():
                if future not in done:
                    logger.warning(
                        f"Advisor {advisor.name} timed out after "
                        f"{self.config.advisor_timeout_seconds}s; using rule-based score"
                    )
                    continue
                try:
                    scores.append(future.result())
                except ExternalModelError as e:
                    logger.warning(f"Advisor {advisor.name} failed: {e}; using rule-based score")
                except Exception as e:
                    logger.warning(
                        f"Advisor {advisor.name} raised unexpectedly: {e}; using rule-based score"
                    )
        finally:
            # Never wait on a hung advisor
            executor.shutdown(wait=False, cancel_futures=True)
        return scores

    def _blend(
        self, overall: float, confidence: float, advisor_scores: list[AdvisorScore]
    ) -> tuple[float, float]:
        total_confidence = sum(a.confidence for a in advisor_scores)
        if total_confidence <= 0:
            return overall, confidence
        model_score = sum(a.score * a.confidence for a in advisor_scores) / total_confidence
        blended = (
            overall * self.config.advisor_rule_weight + model_score * self.config.advisor_model_weight
        )
        boosted = min(
            confidence + self.config.advisor_confidence_boost, self.config.max_confidence
        )
        return blended, boosted

    # Real-time and batch scoring

    def score_real_time(self, submission: ClaimSubmission) -> RealTimeRisk:
        """Cheap pre-persistence score from the submission alone."""
        claim_factors = f.claim_factors(
            submission.procedure_codes, submission.billed_amount, len(submission.line_items)
        )
        score = 10.0
        if claim_factors.total_amount > 5000:
            score += 30
        elif claim_factors.total_amount > 2000:
            score += 15
        score += min(25, claim_factors.complexity * 3)
        score += len(claim_factors.unusual_codes) * 10
        score += claim_factors.bundling_risk * 20
        score = RiskThresholds.clamp_score(score)

        risk_level = self.thresholds.level(score)
        return RealTimeRisk(
            risk_score=score,
            risk_level=risk_level,
            immediate_actions=immediate_actions(risk_level),
            processing_recommendation=processing_recommendation(risk_level),
        )

    def batch_score(
        self, claim_ids: Sequence[str], batch_size: int | None = None
    ) -> dict[str, RiskScore]:
        """Score claims concurrently in bounded groups; failures are skipped."""
        batch_size = batch_size or self.config.batch_size
        results: dict[str, RiskScore] = {}

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(claim_ids), batch_size):
                batch = claim_ids[start:start + batch_size]
                futures = {claim_id: executor.submit(self.score_claim, claim_id) for claim_id in batch}
                for claim_id, future in futures.items():
                    try:
                        results[claim_id] = future.result()
                    except Exception:
                        logger.exception(f"Failed to score claim {claim_id}")

        return results
