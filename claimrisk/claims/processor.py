"""Claim processor: the entry point for scoring a submitted claim.

Flow for one submission:

1. The submission is validated on construction (InputValidationError).
2. A PENDING claim is created in the store.
3. Claim history is loaded once and shared by every detector.
4. Each detector runs in isolation; a failing detector contributes nothing.
5. The latest provider network snapshot is consulted for fraud rings.
6. The risk engine scores the claim.
7. The analysis is written in one atomic PENDING -> terminal transition.
8. Significant decisions are appended to the audit log.

A failed write raises PersistenceError carrying the computed analysis so
the caller can retry with persist_result() without rescoring.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

from ..audit import AuditAction, AuditLog
from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..detectors import (
    ClaimHistory,
    ClaimHistoryLoader,
    DuplicateClaimDetector,
    PhantomBillingDetector,
    RiskThresholds,
    UnbundlingDetector,
    UpcodingDetector,
)
from ..detectors.thresholds import ALERT_SEVERITY_THRESHOLDS
from ..errors import ClaimRiskError, InputValidationError, PersistenceError
from ..models import (
    Claim,
    ClaimAnalysisResult,
    ClaimSubmission,
    FraudAlert,
    FraudType,
    RiskLevel,
)
from ..network.models import FRAUD_RING_ARCHETYPES
from ..network.snapshots import NetworkSnapshotCache
from ..scoring import RiskScore, RiskScoringEngine
from ..store.base import ClaimStore

logger = logging.getLogger(__name__)

_LEVEL_RECOMMENDATIONS: dict[RiskLevel, tuple[str, ...]] = {
    RiskLevel.CRITICAL: (
        "Immediate investigation required",
        "Consider payment suspension",
        "SIU team notification",
    ),
    RiskLevel.HIGH: ("Manual review required", "Additional documentation requested"),
    RiskLevel.MEDIUM: ("Enhanced monitoring recommended", "Verify provider credentials"),
    RiskLevel.LOW: (),
}

_ALERT_RECOMMENDATIONS: dict[FraudType, tuple[str, ...]] = {
    FraudType.UPCODING: ("Review medical record documentation", "Verify time spent with patient"),
    FraudType.UNBUNDLING: ("Check for appropriate use of modifier 59", "Review bundling rules"),
    FraudType.PHANTOM_BILLING: (
        "Verify patient identity and service location",
        "Check provider schedule",
    ),
    FraudType.DUPLICATE_CLAIM: ("Review claim submission history", "Check for system errors"),
    FraudType.ORGANIZED_FRAUD: ("Coordinate investigation across the provider network",),
    FraudType.KICKBACKS: ("Review referral arrangements for kickbacks",),
}

_RING_CONFIDENCE = {archetype.name: archetype.confidence for archetype in FRAUD_RING_ARCHETYPES}

INVESTIGATION_TRIGGERS = frozenset({
    "IMMEDIATE_AUDIT_REQUIRED",
    "IMMEDIATE_INVESTIGATION_REQUIRED",
    "CRITICAL_RISK_ALERT",
})


def claim_recommendations(alerts: Sequence[FraudAlert], risk_level: RiskLevel) -> list[str]:
    recommendations = list(_LEVEL_RECOMMENDATIONS[risk_level])
    for alert in alerts:
        recommendations.extend(_ALERT_RECOMMENDATIONS.get(alert.type, ()))
    return list(dict.fromkeys(recommendations))


@dataclass(frozen=True)
class BatchOutcome:
    index: int
    result: ClaimAnalysisResult | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


class ClaimProcessor:
    def __init__(
        self,
        store: ClaimStore,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        engine: RiskScoringEngine | None = None,
        snapshots: NetworkSnapshotCache | None = None,
        audit_log: AuditLog | None = None,
        actor: str = "claim-processor",
    ) -> None:
        self.store = store
        self.config = config
        self.snapshots = snapshots or (engine.snapshots if engine else NetworkSnapshotCache())
        self.engine = engine or RiskScoringEngine(store, config, snapshots=self.snapshots)
        self.audit_log = audit_log
        self.actor = actor
        self.thresholds = RiskThresholds.from_config(config)

        self.upcoding = UpcodingDetector(store, config)
        self.unbundling = UnbundlingDetector(config)
        self.phantom = PhantomBillingDetector(store, config)
        self.duplicate = DuplicateClaimDetector(store, config)

    # Entry points

    def process_claim(
        self, submission: ClaimSubmission, created_at: datetime | None = None
    ) -> ClaimAnalysisResult:
        if not isinstance(submission, ClaimSubmission):
            raise InputValidationError("Expected a ClaimSubmission")

        claim = Claim.from_submission(submission, created_at=created_at)
        try:
            self.store.create_claim(claim)
        except ClaimRiskError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to create claim: {e}") from e

        result = self.analyze(claim)
        self.persist_result(result, claim)
        return result

    def persist_result(self, result: ClaimAnalysisResult, claim: Claim | None = None) -> None:
        """Write a computed analysis; safe to call again after PersistenceError."""
        try:
            self.store.record_analysis(
                claim_id=result.claim_id,
                status=result.status,
                risk_score=result.risk_score,
                risk_level=result.risk_level,
                fraud_types=result.fraud_types,
                alerts=result.alerts,
            )
        except ClaimRiskError:
            raise
        except Exception as e:
            logger.error(f"Failed to persist analysis for claim {result.claim_id}: {e}")
            raise PersistenceError(
                f"Analysis for claim {result.claim_id} could not be saved: {e}", result=result
            ) from e

        claim = claim or self.store.get_claim(result.claim_id)
        self._audit(result, claim.company_id if claim else "default")

    def process_batch(self, submissions: Sequence[ClaimSubmission]) -> list[BatchOutcome]:
        """Process submissions in bounded concurrent groups; failures stay per item."""
        batch_size = self.config.batch_size
        outcomes: list[BatchOutcome] = []

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(submissions), batch_size):
                futures = [
                    (index, executor.submit(self.process_claim, submission))
                    for index, submission in enumerate(
                        submissions[start:start + batch_size], start=start
                    )
                ]
                for index, future in futures:
                    try:
                        outcomes.append(BatchOutcome(index=index, result=future.result()))
                    except Exception as e:
                        logger.exception(f"Failed to process claim at batch index {index}")
                        outcomes.append(BatchOutcome(index=index, error=str(e)))

        return outcomes

    # Analysis

    def analyze(self, claim: Claim) -> ClaimAnalysisResult:
        """Score a stored claim without writing anything."""
        lookback = max(
            self.config.upcoding_lookback_days,
            self.config.phantom_lookback_days,
            self.config.scoring_lookback_days,
        )
        history = ClaimHistoryLoader(self.store).load(claim.provider_id, lookback, claim.created_at)

        alerts: list[FraudAlert] = []
        detector_triggers: list[str] = []

        upcoding = self._run_detector("upcoding", claim, lambda: self.upcoding.analyze_history(history))
        if upcoding is not None:
            self._collect(alerts, upcoding.to_alert())
            detector_triggers.extend(upcoding.audit_triggers)

        unbundling = self._run_detector("unbundling", claim, lambda: self.unbundling.detect(claim.line_items))
        if unbundling is not None:
            self._collect(alerts, unbundling)

        phantom = self._run_detector("phantom billing", claim, lambda: self.phantom.analyze_history(history))
        if phantom is not None:
            self._collect(alerts, phantom.to_alert())
            detector_triggers.extend(phantom.audit_triggers)

        duplicate = self._run_detector("duplicate", claim, lambda: self.duplicate.detect(claim))
        if duplicate is not None:
            self._collect(alerts, duplicate)

        network_alert = self._run_detector("network", claim, lambda: self._network_alert(claim))
        if network_alert is not None:
            self._collect(alerts, network_alert)

        risk = self._score(claim, history)

        risk_score = max([risk.overall_score] + [a.confidence for a in alerts])
        risk_level = self.thresholds.level(risk_score)
        approved = risk_score < self.config.auto_approve_max_score and not alerts

        fraud_types = list(dict.fromkeys(alert.type for alert in alerts))
        audit_triggers = list(dict.fromkeys(risk.audit_triggers + detector_triggers))

        logger.info(
            f"Claim {claim.claim_number} scored {risk_score:.1f} ({risk_level.value}), "
            f"alerts={[t.value for t in fraud_types]}, approved={approved}"
        )
        return ClaimAnalysisResult(
            claim_id=claim.id,
            claim_number=claim.claim_number,
            risk_score=risk_score,
            risk_level=risk_level,
            fraud_types=fraud_types,
            alerts=alerts,
            recommendations=claim_recommendations(alerts, risk_level),
            approved=approved,
            risk_breakdown=dict(risk.breakdown),
            key_drivers=list(risk.key_drivers),
            audit_triggers=audit_triggers,
        )

    @staticmethod
    def _collect(alerts: list[FraudAlert], alert: FraudAlert) -> None:
        if alert.confidence > 0:
            alerts.append(alert)

    @staticmethod
    def _run_detector(name: str, claim: Claim, run: Callable[[], object]):
        try:
            return run()
        except Exception as e:
            logger.warning(f"Detector '{name}' failed for claim {claim.id}, skipping: {e}")
            return None

    def _score(self, claim: Claim, history: ClaimHistory) -> RiskScore:
        try:
            return self.engine.score(claim, history=history)
        except Exception as e:
            logger.warning(f"Risk engine failed for claim {claim.id}, using neutral score: {e}")
            return RiskScore(
                overall_score=0.0,
                confidence=self.config.base_confidence,
                risk_level=RiskLevel.LOW,
                breakdown={d: 0.0 for d in ("provider", "claim", "patient", "network", "behavioral")},
            )

    def _network_alert(self, claim: Claim) -> FraudAlert | None:
        profile = self.snapshots.provider_profile(claim.company_id, claim.provider_id)
        if not profile.fraud_rings:
            return None
        confidence = max(_RING_CONFIDENCE.get(ring, 0.0) for ring in profile.fraud_rings)
        fraud_type = (
            FraudType.KICKBACKS if "KICKBACK_RING" in profile.fraud_rings else FraudType.ORGANIZED_FRAUD
        )
        return FraudAlert(
            type=fraud_type,
            severity=ALERT_SEVERITY_THRESHOLDS.level(confidence),
            confidence=confidence,
            description=f"Provider belongs to suspected fraud ring: {', '.join(profile.fraud_rings)}",
            details=profile.to_dict(),
            detection_model="ProviderNetworkAnalyzer-v1",
        )

    # Audit

    def _audit(self, result: ClaimAnalysisResult, company_id: str) -> None:
        if self.audit_log is None:
            return
        details = {
            "claim_number": result.claim_number,
            "risk_score": round(result.risk_score, 2),
            "risk_level": result.risk_level.value,
            "fraud_types": [t.value for t in result.fraud_types],
        }
        actions = [AuditAction.CLAIM_AUTO_APPROVED if result.approved else AuditAction.CLAIM_FLAGGED]
        if result.risk_level is RiskLevel.CRITICAL or INVESTIGATION_TRIGGERS & set(result.audit_triggers):
            actions.append(AuditAction.CLAIM_INVESTIGATION_TRIGGERED)

        for action in actions:
            try:
                self.audit_log.record(
                    tenant_id=company_id,
                    actor=self.actor,
                    action=action,
                    resource_type="claim",
                    resource_id=result.claim_id,
                    details=details,
                )
            except Exception as e:
                logger.warning(f"Audit log write failed for claim {result.claim_id}: {e}")
