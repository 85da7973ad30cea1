"""Domain models shared by detectors, the scoring engine and the processor."""

from __future__ import annotations

import random
import string
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable

from .errors import InputValidationError

MAX_MODIFIERS = 4
MAX_DIAGNOSIS_CODES = 4


class RiskLevel(str, Enum):
    """Risk classification shared by alerts, detectors and scores."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FraudType(str, Enum):
    """Fraud schemes an alert can describe."""

    PHANTOM_BILLING = "PHANTOM_BILLING"
    UPCODING = "UPCODING"
    UNBUNDLING = "UNBUNDLING"
    DUPLICATE_CLAIM = "DUPLICATE_CLAIM"
    KICKBACKS = "KICKBACKS"
    UNNECESSARY_SERVICES = "UNNECESSARY_SERVICES"
    MISREPRESENTED_SERVICES = "MISREPRESENTED_SERVICES"
    ORGANIZED_FRAUD = "ORGANIZED_FRAUD"


class ClaimStatus(str, Enum):
    """Claim lifecycle. PENDING moves once to a terminal status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    FLAGGED_FOR_FRAUD = "FLAGGED_FOR_FRAUD"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.PENDING


class ProviderType(str, Enum):
    PHYSICIAN = "PHYSICIAN"
    HOSPITAL = "HOSPITAL"
    CLINIC = "CLINIC"
    LABORATORY = "LABORATORY"
    THERAPIST = "THERAPIST"
    DME = "DME"


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if not isinstance(value, Decimal):
        try:
            # str() first so floats like 0.1 keep their printed value
            value = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as e:
            raise InputValidationError(
                f"{field_name} must be a decimal amount, got {value!r}", field=field_name
            ) from e
    if not value.is_finite():
        raise InputValidationError(
            f"{field_name} must be a finite amount, got {value!r}", field=field_name
        )
    return value


@dataclass(frozen=True)
class LineItem:
    """A single billed procedure on a claim."""

    procedure_code: str
    modifiers: frozenset[str] = field(default_factory=frozenset)
    units: int = 1
    unit_cost: Decimal = Decimal("0")
    diagnosis_codes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        code = (self.procedure_code or "").strip()
        if not code:
            raise InputValidationError("procedure_code is required", field="procedure_code")
        object.__setattr__(self, "procedure_code", code)

        raw_modifiers = self.modifiers or ()
        if isinstance(raw_modifiers, str) or any(not isinstance(m, str) for m in raw_modifiers):
            raise InputValidationError("modifiers must be a collection of strings", field="modifiers")
        modifiers = frozenset(m.strip() for m in raw_modifiers if m.strip())
        if len(modifiers) > MAX_MODIFIERS:
            raise InputValidationError(
                f"At most {MAX_MODIFIERS} modifiers allowed, got {len(modifiers)}",
                field="modifiers",
            )
        object.__setattr__(self, "modifiers", modifiers)

        if isinstance(self.units, bool) or not isinstance(self.units, int) or self.units < 1:
            raise InputValidationError(
                f"units must be a positive integer, got {self.units!r}", field="units"
            )

        unit_cost = _to_decimal(self.unit_cost, "unit_cost")
        if unit_cost < 0:
            raise InputValidationError("unit_cost must be non-negative", field="unit_cost")
        object.__setattr__(self, "unit_cost", unit_cost)

        diagnosis_codes = tuple(d for d in (self.diagnosis_codes or ()) if d)
        if len(diagnosis_codes) > MAX_DIAGNOSIS_CODES:
            raise InputValidationError(
                f"At most {MAX_DIAGNOSIS_CODES} diagnosis codes allowed",
                field="diagnosis_codes",
            )
        object.__setattr__(self, "diagnosis_codes", diagnosis_codes)

    @property
    def total_cost(self) -> Decimal:
        return self.unit_cost * self.units

    def to_dict(self) -> dict[str, Any]:
        return {
            "procedure_code": self.procedure_code,
            "modifiers": sorted(self.modifiers),
            "units": self.units,
            "unit_cost": str(self.unit_cost),
            "diagnosis_codes": list(self.diagnosis_codes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            procedure_code=data.get("procedure_code", ""),
            modifiers=frozenset(data.get("modifiers") or ()),
            units=data.get("units", 1),
            unit_cost=data.get("unit_cost", "0"),
            diagnosis_codes=tuple(data.get("diagnosis_codes") or ()),
        )


def billed_amount(line_items: Iterable[LineItem]) -> Decimal:
    """Exact sum of unit_cost x units across line items."""
    return sum((item.total_cost for item in line_items), Decimal("0"))


@dataclass(frozen=True)
class ClaimSubmission:
    """Immutable claim as received from the intake boundary.

    Construction validates the submission; a malformed submission never
    reaches a detector.
    """

    patient_id: str
    provider_id: str
    service_date: date
    line_items: tuple[LineItem, ...]
    company_id: str = "default"

    def __post_init__(self) -> None:
        for name in ("patient_id", "provider_id", "company_id"):
            if not getattr(self, name):
                raise InputValidationError(f"{name} is required", field=name)
        if not isinstance(self.service_date, date):
            raise InputValidationError("service_date is required", field="service_date")
        if isinstance(self.service_date, datetime):
            object.__setattr__(self, "service_date", self.service_date.date())
        items = tuple(self.line_items or ())
        if not items:
            raise InputValidationError(
                "At least one line item is required", field="line_items"
            )
        object.__setattr__(self, "line_items", items)

    @property
    def billed_amount(self) -> Decimal:
        return billed_amount(self.line_items)

    @property
    def procedure_codes(self) -> list[str]:
        return [item.procedure_code for item in self.line_items]


def generate_claim_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"CLM-{int(time.time() * 1000)}-{suffix}"


@dataclass
class Claim:
    """Persisted claim. Owned by the claims store."""

    patient_id: str
    provider_id: str
    service_date: date
    line_items: tuple[LineItem, ...]
    company_id: str = "default"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    claim_number: str = field(default_factory=generate_claim_number)
    status: ClaimStatus = ClaimStatus.PENDING
    risk_score: float | None = None
    risk_level: RiskLevel | None = None
    fraud_types: frozenset[FraudType] = field(default_factory=frozenset)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    billed_amount: Decimal | None = None

    def __post_init__(self) -> None:
        self.line_items = tuple(self.line_items)
        if self.billed_amount is None:
            self.billed_amount = billed_amount(self.line_items)

    @classmethod
    def from_submission(
        cls, submission: ClaimSubmission, created_at: datetime | None = None
    ) -> Claim:
        kwargs: dict[str, Any] = {}
        if created_at is not None:
            kwargs["created_at"] = created_at
        return cls(
            patient_id=submission.patient_id,
            provider_id=submission.provider_id,
            service_date=submission.service_date,
            line_items=submission.line_items,
            company_id=submission.company_id,
            **kwargs,
        )

    @property
    def is_flagged(self) -> bool:
        return self.risk_score is not None and self.risk_score > 70

    def counts_as_flagged(self, score_min: float = 70) -> bool:
        """Flagged for fraud, or scored above `score_min`."""
        if self.status is ClaimStatus.FLAGGED_FOR_FRAUD:
            return True
        return self.risk_score is not None and self.risk_score > score_min

    @property
    def procedure_codes(self) -> list[str]:
        return [item.procedure_code for item in self.line_items]

    @property
    def total_units(self) -> int:
        return sum(item.units for item in self.line_items)


@dataclass(frozen=True)
class FraudAlert:
    """Evidence emitted by a detector. Immutable once created."""

    type: FraudType
    severity: RiskLevel
    confidence: float
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    detection_model: str = "ClaimProcessor-v1"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "description": self.description,
            "details": self.details,
            "detection_model": self.detection_model,
        }


@dataclass(frozen=True)
class ProviderRecord:
    id: str
    npi: str = ""
    name: str = ""
    specialty: str = "GENERAL_PRACTICE"
    provider_type: ProviderType = ProviderType.PHYSICIAN
    address: str | None = None
    phone: str | None = None
    city: str | None = None
    state: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    company_id: str = "default"

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class PatientRecord:
    id: str
    date_of_birth: date | None = None
    address: str | None = None
    phone: str | None = None
    city: str | None = None
    state: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def has_complete_demographics(self) -> bool:
        return bool(self.date_of_birth and self.address and self.phone)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def age(self, as_of: date | None = None) -> int | None:
        if self.date_of_birth is None:
            return None
        as_of = as_of or date.today()
        years = as_of.year - self.date_of_birth.year
        if (as_of.month, as_of.day) < (self.date_of_birth.month, self.date_of_birth.day):
            years -= 1
        return years


@dataclass
class ClaimAnalysisResult:
    """What the processor returns to the caller for one submission."""

    claim_id: str
    claim_number: str
    risk_score: float
    risk_level: RiskLevel
    fraud_types: list[FraudType]
    alerts: list[FraudAlert]
    recommendations: list[str]
    approved: bool
    risk_breakdown: dict[str, float] = field(default_factory=dict)
    key_drivers: list[str] = field(default_factory=list)
    audit_triggers: list[str] = field(default_factory=list)

    @property
    def status(self) -> ClaimStatus:
        return ClaimStatus.APPROVED if self.approved else ClaimStatus.FLAGGED_FOR_FRAUD

    @property
    def is_flagged(self) -> bool:
        return self.risk_score > 70

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        data["fraud_types"] = [t.value for t in self.fraud_types]
        data["alerts"] = [alert.to_dict() for alert in self.alerts]
        data["status"] = self.status.value
        return data
