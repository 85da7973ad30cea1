"""Fraud-pattern detectors and their shared rule framework."""

from .duplicate import DuplicateClaimDetector
from .history import ClaimHistory, ClaimHistoryLoader
from .models import PatternHit, PatternResult, PatternRule
from .phantom import PhantomBillingDetector, PhantomBillingResult
from .registry import PatternRegistry, evaluate_patterns
from .thresholds import DetectionThresholds, RiskThresholds
from .unbundling import UnbundlingDetector
from .upcoding import UpcodingDetector, UpcodingResult

__all__ = [
    "ClaimHistory",
    "ClaimHistoryLoader",
    "DetectionThresholds",
    "DuplicateClaimDetector",
    "PatternHit",
    "PatternRegistry",
    "PatternResult",
    "PatternRule",
    "PhantomBillingDetector",
    "PhantomBillingResult",
    "RiskThresholds",
    "UnbundlingDetector",
    "UpcodingDetector",
    "UpcodingResult",
    "evaluate_patterns",
]
