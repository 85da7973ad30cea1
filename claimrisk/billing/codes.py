"""Procedure code reference tables.

Static knowledge base of CPT/HCPCS codes used by the detectors: price
ranges, permitted modifiers, bundling relationships and the higher-level
codes a service could be upcoded to.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float


@dataclass(frozen=True)
class ProcedureCode:
    code: str
    description: str
    category: str
    base_rate: float
    typical_range: PriceRange
    modifiers: frozenset[str] = frozenset()
    bundled_codes: frozenset[str] = frozenset()
    unbundling_risk: str = "LOW"
    higher_level_codes: tuple[str, ...] = ()
    risk_factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class HighRiskCombination:
    codes: frozenset[str]
    risk_type: str
    description: str
    risk_score: int


BUNDLING_RISK_WEIGHTS: dict[str, int] = {"HIGH": 40, "MEDIUM": 25, "LOW": 10}

_EM_MODIFIERS = frozenset({"25", "57", "59"})


def _em(code: str, description: str, base: float, low: float, high: float,
        tier: str, higher: tuple[str, ...], factors: tuple[str, ...]) -> ProcedureCode:
    return ProcedureCode(
        code=code,
        description=description,
        category="E&M",
        base_rate=base,
        typical_range=PriceRange(low, high),
        modifiers=_EM_MODIFIERS,
        unbundling_risk=tier,
        higher_level_codes=higher,
        risk_factors=factors,
    )


PROCEDURE_CODES: dict[str, ProcedureCode] = {
    # Evaluation and Management, new patient
    "99201": _em("99201", "Office visit, new patient, 10 minutes", 45, 35, 55,
                 "LOW", ("99202", "99203", "99204", "99205"), ("HIGH_FREQUENCY",)),
    "99202": _em("99202", "Office visit, new patient, 15-29 minutes", 75, 60, 90,
                 "LOW", ("99203", "99204", "99205"), ("HIGH_FREQUENCY",)),
    "99203": _em("99203", "Office visit, new patient, 30-44 minutes", 110, 95, 130,
                 "LOW", ("99204", "99205"), ("HIGH_FREQUENCY", "TIME_DOCUMENTATION_MISMATCH")),
    "99204": _em("99204", "Office visit, new patient, 45-59 minutes", 165, 140, 190,
                 "MEDIUM", ("99205",), ("HIGH_FREQUENCY", "TIME_DOCUMENTATION_MISMATCH")),
    "99205": _em("99205", "Office visit, new patient, 60-74 minutes", 210, 185, 240,
                 "HIGH", (), ("EXCESSIVE_FREQUENCY", "COMPLEXITY_MISMATCH")),
    # Evaluation and Management, established patient
    "99211": _em("99211", "Office visit, established patient, minimal", 25, 20, 35,
                 "LOW", ("99212", "99213", "99214", "99215"), ("HIGH_FREQUENCY",)),
    "99212": _em("99212", "Office visit, established patient, 10-19 minutes", 50, 40, 65,
                 "LOW", ("99213", "99214", "99215"), ("HIGH_FREQUENCY",)),
    "99213": _em("99213", "Office visit, established patient, 15-29 minutes", 75, 60, 95,
                 "LOW", ("99214", "99215"), ("HIGH_FREQUENCY", "TIME_DOCUMENTATION_MISMATCH")),
    "99214": _em("99214", "Office visit, established patient, 30-39 minutes", 110, 95, 130,
                 "MEDIUM", ("99215",), ("HIGH_FREQUENCY", "TIME_DOCUMENTATION_MISMATCH")),
    "99215": _em("99215", "Office visit, established patient, 40-54 minutes", 150, 130, 180,
                 "HIGH", (), ("EXCESSIVE_FREQUENCY", "COMPLEXITY_MISMATCH")),
    # Endoscopy
    "43235": ProcedureCode(
        code="43235",
        description="Upper GI endoscopy, diagnostic",
        category="ENDOSCOPY",
        base_rate=300,
        typical_range=PriceRange(250, 380),
        modifiers=frozenset({"59", "78"}),
    ),
    "43236": ProcedureCode(
        code="43236",
        description="Upper GI endoscopy with submucosal injection",
        category="ENDOSCOPY",
        base_rate=360,
        typical_range=PriceRange(300, 430),
        modifiers=frozenset({"59", "78"}),
    ),
    "43239": ProcedureCode(
        code="43239",
        description="Upper GI endoscopy with biopsy",
        category="ENDOSCOPY",
        base_rate=450,
        typical_range=PriceRange(400, 550),
        modifiers=frozenset({"25", "59", "78"}),
        bundled_codes=frozenset({"43235", "43236"}),
        unbundling_risk="HIGH",
        higher_level_codes=("43249", "43250"),
        risk_factors=("UNBUNDLING", "MODIFIER_ABUSE"),
    ),
    # Laboratory
    "80048": ProcedureCode(
        code="80048",
        description="Basic metabolic panel",
        category="LABORATORY",
        base_rate=30,
        typical_range=PriceRange(20, 45),
        modifiers=frozenset({"91", "59"}),
    ),
    "80053": ProcedureCode(
        code="80053",
        description="Comprehensive metabolic panel",
        category="LABORATORY",
        base_rate=45,
        typical_range=PriceRange(35, 60),
        modifiers=frozenset({"91", "59"}),
        bundled_codes=frozenset({"80048", "80076"}),
        unbundling_risk="MEDIUM",
        higher_level_codes=("80076",),
        risk_factors=("DUPLICATE_TESTING", "MEDICAL_NECESSITY"),
    ),
    "80076": ProcedureCode(
        code="80076",
        description="Hepatic function panel",
        category="LABORATORY",
        base_rate=35,
        typical_range=PriceRange(25, 50),
        modifiers=frozenset({"91", "59"}),
    ),
    # Radiology
    "71010": ProcedureCode(
        code="71010",
        description="Chest X-ray, single view",
        category="RADIOLOGY",
        base_rate=40,
        typical_range=PriceRange(30, 55),
        modifiers=frozenset({"26", "59"}),
    ),
    "71020": ProcedureCode(
        code="71020",
        description="Chest X-ray, 2 views",
        category="RADIOLOGY",
        base_rate=65,
        typical_range=PriceRange(50, 80),
        modifiers=frozenset({"26", "59"}),
        bundled_codes=frozenset({"71010"}),
        unbundling_risk="LOW",
        higher_level_codes=("71021", "71250"),
        risk_factors=("FREQUENT_REPEATS", "CLINICAL_INDICATION"),
    ),
    # HCPCS durable medical equipment
    "E0110": ProcedureCode(
        code="E0110",
        description="Crutches, forearm, pair",
        category="DME",
        base_rate=60,
        typical_range=PriceRange(45, 90),
        modifiers=frozenset({"NU", "RR"}),
        risk_factors=("REQUIRES_DOCUMENTATION",),
    ),
    "E0260": ProcedureCode(
        code="E0260",
        description="Hospital bed, semi-electric, with mattress",
        category="DME",
        base_rate=180,
        typical_range=PriceRange(140, 260),
        modifiers=frozenset({"NU", "RR"}),
        risk_factors=("REQUIRES_DOCUMENTATION", "PHANTOM_DELIVERY"),
    ),
}

HIGH_RISK_COMBINATIONS: tuple[HighRiskCombination, ...] = (
    HighRiskCombination(
        codes=frozenset({"99213", "99214"}),
        risk_type="DUPLICATE_E&M",
        description="Multiple E&M codes for same encounter",
        risk_score=85,
    ),
    HighRiskCombination(
        codes=frozenset({"43239", "43235", "43236"}),
        risk_type="UNBUNDLING_ENDOSCOPY",
        description="Unbundling endoscopy procedures",
        risk_score=90,
    ),
    HighRiskCombination(
        codes=frozenset({"80053", "80048"}),
        risk_type="DUPLICATE_LAB",
        description="Duplicate metabolic panels",
        risk_score=75,
    ),
)

# E&M complexity on a 1-5 scale
E_AND_M_COMPLEXITY: dict[str, int] = {
    "99201": 1, "99202": 2, "99203": 3, "99204": 4, "99205": 5,
    "99211": 1, "99212": 2, "99213": 3, "99214": 4, "99215": 5,
}

HIGH_LEVEL_E_AND_M = frozenset(
    code for code, level in E_AND_M_COMPLEXITY.items() if level >= 4
)

# Unlisted-procedure codes; billing them bypasses fee schedules
UNLISTED_CODES = frozenset(
    {"17999", "64999", "99199", "99499", "99997", "99998", "99999"}
)
