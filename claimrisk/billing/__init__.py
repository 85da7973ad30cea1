"""Billing code reference data and validation."""

from .codes import (
    E_AND_M_COMPLEXITY,
    HIGH_LEVEL_E_AND_M,
    HIGH_RISK_COMBINATIONS,
    PROCEDURE_CODES,
    UNLISTED_CODES,
    ProcedureCode,
)
from .validator import (
    CodeCombinationResult,
    check_unbundling_risk,
    check_upcoding_risk,
    higher_level_codes,
    is_known_code,
    is_unusual_code,
    modifier_allowed,
    typical_range,
    validate_code_combination,
)

__all__ = [
    "E_AND_M_COMPLEXITY",
    "HIGH_LEVEL_E_AND_M",
    "HIGH_RISK_COMBINATIONS",
    "PROCEDURE_CODES",
    "UNLISTED_CODES",
    "ProcedureCode",
    "CodeCombinationResult",
    "check_unbundling_risk",
    "check_upcoding_risk",
    "higher_level_codes",
    "is_known_code",
    "is_unusual_code",
    "modifier_allowed",
    "typical_range",
    "validate_code_combination",
]
