"""Unbundling detection over the procedure codes of a single claim."""
from __future__ import annotations

from collections.abc import Iterable

from ..billing import validate_code_combination
from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..models import FraudAlert, FraudType, LineItem, RiskLevel
from .thresholds import ALERT_SEVERITY_THRESHOLDS


class UnbundlingDetector:
    def __init__(self, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> None:
        self.config = config

    def detect(self, line_items: Iterable[LineItem]) -> FraudAlert:
        """Return an UNBUNDLING alert; confidence is 0 unless the code set is risky."""
        codes = [item.procedure_code for item in line_items]
        validation = validate_code_combination(codes)
        details = {
            "procedure_codes": sorted(set(codes)),
            "warnings": list(validation.warnings),
            "risk_score": validation.risk_score,
        }

        if validation.risk_score > self.config.unbundling_alert_min:
            confidence = float(validation.risk_score)
            return FraudAlert(
                type=FraudType.UNBUNDLING,
                severity=ALERT_SEVERITY_THRESHOLDS.level(confidence),
                confidence=confidence,
                description="Potential unbundling detected in procedure codes",
                details=details,
                detection_model="UnbundlingDetector-v1",
            )

        return FraudAlert(
            type=FraudType.UNBUNDLING,
            severity=RiskLevel.LOW,
            confidence=0.0,
            description="No unbundling risk detected",
            details=details,
            detection_model="UnbundlingDetector-v1",
        )
