"""Threshold configuration for mapping scores to risk levels."""
from __future__ import annotations

from dataclasses import dataclass

from ..config import ScoringConfig
from ..models import RiskLevel


@dataclass(frozen=True)
class DetectionThresholds:
    critical_min: float = 80
    high_min: float = 60
    medium_min: float = 40

    def level(self, score: float) -> RiskLevel:
        if score >= self.critical_min:
            return RiskLevel.CRITICAL
        if score >= self.high_min:
            return RiskLevel.HIGH
        if score >= self.medium_min:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def clamp_score(score: float) -> float:
        if score < 0.0:
            return 0.0
        if score > 100.0:
            return 100.0
        return score


@dataclass(frozen=True)
class RiskThresholds(DetectionThresholds):
    """Aggregate risk level bounds: LOW <=30, MEDIUM 31-60, HIGH 61-80, CRITICAL >=81."""

    critical_min: float = 81
    high_min: float = 61
    medium_min: float = 31

    @classmethod
    def from_config(cls, config: ScoringConfig) -> RiskThresholds:
        return cls(
            critical_min=config.critical_min,
            high_min=config.high_min,
            medium_min=config.medium_min,
        )


UPCODING_THRESHOLDS = DetectionThresholds(critical_min=80, high_min=60, medium_min=40)
PHANTOM_BILLING_THRESHOLDS = DetectionThresholds(critical_min=85, high_min=70, medium_min=50)
ALERT_SEVERITY_THRESHOLDS = DetectionThresholds(critical_min=80, high_min=60, medium_min=40)
