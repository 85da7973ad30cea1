"""Aggregate risk scoring over the five risk dimensions."""

from .advisor import AdvisorScore, ClaudeRiskAdvisor, ExternalRiskAdvisor, default_advisors
from .engine import RealTimeRisk, RiskScore, RiskScoringEngine

__all__ = [
    "AdvisorScore",
    "ClaudeRiskAdvisor",
    "ExternalRiskAdvisor",
    "RealTimeRisk",
    "RiskScore",
    "RiskScoringEngine",
    "default_advisors",
]
