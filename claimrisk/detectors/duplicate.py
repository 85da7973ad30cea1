"""Duplicate claim detection within a symmetric creation-time window."""

from __future__ import annotations

from datetime import timedelta

from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..models import Claim, FraudAlert, FraudType, RiskLevel
from ..store.base import ClaimStore


class DuplicateClaimDetector:
    """Flags claims identical on provider, patient, service date and amount.

    Only claims created within `duplicate_window_days` of the checked claim
    count as duplicates, so the relation is symmetric. The claim itself is
    excluded.
    """

    def __init__(self, store: ClaimStore, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> None:
        self.store = store
        self.config = config

    def detect(self, claim: Claim) -> FraudAlert:
        window = timedelta(days=self.config.duplicate_window_days)
        since = claim.created_at - window
        until = claim.created_at + window
        matches = [
            c for c in self.store.find_matching_claims(
                provider_id=claim.provider_id,
                patient_id=claim.patient_id,
                service_date=claim.service_date,
                billed_amount=claim.billed_amount,
                since=since,
                exclude_claim_id=claim.id,
            )
            if c.created_at <= until
        ]

        if matches:
            return FraudAlert(
                type=FraudType.DUPLICATE_CLAIM,
                severity=RiskLevel.HIGH,
                confidence=float(self.config.duplicate_confidence),
                description="Potential duplicate claim detected",
                details={
                    "duplicate_claim_ids": [c.id for c in matches],
                    "duplicate_claim_numbers": [c.claim_number for c in matches],
                    "window_days": self.config.duplicate_window_days,
                },
                detection_model="DuplicateClaimDetector-v1",
            )

        return FraudAlert(
            type=FraudType.DUPLICATE_CLAIM,
            severity=RiskLevel.LOW,
            confidence=0.0,
            description="No duplicate claims found",
            details={"window_days": self.config.duplicate_window_days},
            detection_model="DuplicateClaimDetector-v1",
        )
