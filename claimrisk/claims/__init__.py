"""Claim intake, detector orchestration and result persistence."""

from .processor import BatchOutcome, ClaimProcessor, claim_recommendations

__all__ = ["BatchOutcome", "ClaimProcessor", "claim_recommendations"]
