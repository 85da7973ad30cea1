"""Error taxonomy for claim risk scoring.

The processor and HTTP layer distinguish four failure classes:

- InputValidationError: the submission is malformed; nothing is scored.
- DataUnavailableError: a referenced provider, patient or claim is missing.
  Detectors degrade to an "insufficient data" result instead of raising it.
- ExternalModelError: an external risk advisor failed or timed out; the
  engine falls back to the rule-based score.
- PersistenceError: scoring succeeded but the write did not. The computed
  analysis travels with the exception so the caller can retry the write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ClaimAnalysisResult


class ClaimRiskError(Exception):
    """Base class for all claim risk errors."""


class InputValidationError(ClaimRiskError, ValueError):
    """Raised when a claim submission is malformed or incomplete."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class DataUnavailableError(ClaimRiskError, LookupError):
    """Raised when a referenced record cannot be found in the store."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"{resource_type} {resource_id} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class ExternalModelError(ClaimRiskError):
    """Raised when an external risk advisor call fails."""

    def __init__(self, model: str, message: str) -> None:
        super().__init__(f"{model}: {message}")
        self.model = model


class InvalidStatusTransitionError(ClaimRiskError):
    """Raised when a claim is moved out of a terminal status."""

    def __init__(self, claim_id: str, current: Any, target: Any) -> None:
        super().__init__(
            f"Claim {claim_id} cannot transition from {current} to {target}"
        )
        self.claim_id = claim_id
        self.current = current
        self.target = target


class PersistenceError(ClaimRiskError):
    """Raised when the analysis could not be written to the claims store."""

    def __init__(
        self,
        message: str,
        result: ClaimAnalysisResult | None = None,
    ) -> None:
        super().__init__(message)
        self.result = result
