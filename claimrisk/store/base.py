"""Claims store interface.

The store is the only component that persists anything. Detectors and
the scoring engine only read through it; the claim processor performs the
single write per claim via record_analysis().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from ..models import (
    Claim,
    ClaimStatus,
    FraudAlert,
    FraudType,
    PatientRecord,
    ProviderRecord,
    RiskLevel,
)


class ClaimStore(ABC):
    """Abstract storage collaborator for claims, providers and patients.

    Implementations must make record_analysis() a single atomic transition
    from PENDING to a terminal status, together with the alert inserts.
    """

    # Reference data

    @abstractmethod
    def get_provider(self, provider_id: str) -> ProviderRecord | None:
        """Return the provider record or None if unknown."""

    @abstractmethod
    def get_patient(self, patient_id: str) -> PatientRecord | None:
        """Return the patient record or None if unknown."""

    @abstractmethod
    def list_providers(self, company_id: str) -> list[ProviderRecord]:
        """Return all providers registered under a company."""

    # Claims

    @abstractmethod
    def create_claim(self, claim: Claim) -> Claim:
        """Insert a new PENDING claim."""

    @abstractmethod
    def get_claim(self, claim_id: str) -> Claim | None:
        """Return a claim by id."""

    @abstractmethod
    def provider_claims(
        self, provider_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        """Claims for a provider created in [since, until]; open-ended without `until`."""

    @abstractmethod
    def patient_claims(
        self, patient_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        """Claims for a patient created in [since, until]; open-ended without `until`."""

    @abstractmethod
    def find_matching_claims(
        self,
        provider_id: str,
        patient_id: str,
        service_date: date,
        billed_amount: Decimal,
        since: datetime,
        exclude_claim_id: str | None = None,
    ) -> list[Claim]:
        """Claims identical on provider, patient, service date and amount."""

    @abstractmethod
    def record_analysis(
        self,
        claim_id: str,
        status: ClaimStatus,
        risk_score: float,
        risk_level: RiskLevel,
        fraud_types: Iterable[FraudType],
        alerts: Iterable[FraudAlert],
    ) -> None:
        """Atomically finalise a PENDING claim and insert its alerts."""

    @abstractmethod
    def get_alerts(self, claim_id: str) -> list[FraudAlert]:
        """Alerts recorded for a claim."""

    def active_providers(self, company_id: str, since: datetime) -> list[ProviderRecord]:
        """Providers of a company with at least one claim since `since`."""
        active = []
        for provider in self.list_providers(company_id):
            if self.provider_claims(provider.id, since):
                active.append(provider)
        return active
