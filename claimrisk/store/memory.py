"""Thread-safe in-memory claims store.

Used by tests and by single-process deployments that do not need
durability.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from ..errors import InvalidStatusTransitionError
from ..models import (
    Claim,
    ClaimStatus,
    FraudAlert,
    FraudType,
    PatientRecord,
    ProviderRecord,
    RiskLevel,
)
from .base import ClaimStore


def _in_window(claim: Claim, since: datetime, until: datetime | None) -> bool:
    return claim.created_at >= since and (until is None or claim.created_at <= until)


class InMemoryClaimStore(ClaimStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._providers: dict[str, ProviderRecord] = {}
        self._patients: dict[str, PatientRecord] = {}
        self._claims: dict[str, Claim] = {}
        self._alerts: dict[str, list[FraudAlert]] = {}

    def add_provider(self, provider: ProviderRecord) -> ProviderRecord:
        with self._lock:
            self._providers[provider.id] = provider
        return provider

    def add_patient(self, patient: PatientRecord) -> PatientRecord:
        with self._lock:
            self._patients[patient.id] = patient
        return patient

    def get_provider(self, provider_id: str) -> ProviderRecord | None:
        return self._providers.get(provider_id)

    def get_patient(self, patient_id: str) -> PatientRecord | None:
        return self._patients.get(patient_id)

    def list_providers(self, company_id: str) -> list[ProviderRecord]:
        with self._lock:
            return [p for p in self._providers.values() if p.company_id == company_id]

    def create_claim(self, claim: Claim) -> Claim:
        with self._lock:
            self._claims[claim.id] = claim
            self._alerts.setdefault(claim.id, [])
        return claim

    def get_claim(self, claim_id: str) -> Claim | None:
        return self._claims.get(claim_id)

    def _snapshot(self) -> list[Claim]:
        with self._lock:
            return list(self._claims.values())

    def provider_claims(
        self, provider_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        return [
            c for c in self._snapshot()
            if c.provider_id == provider_id and _in_window(c, since, until)
        ]

    def patient_claims(
        self, patient_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        return [
            c for c in self._snapshot()
            if c.patient_id == patient_id and _in_window(c, since, until)
        ]

    def find_matching_claims(
        self,
        provider_id: str,
        patient_id: str,
        service_date: date,
        billed_amount: Decimal,
        since: datetime,
        exclude_claim_id: str | None = None,
    ) -> list[Claim]:
        return [
            c for c in self._snapshot()
            if c.provider_id == provider_id
            and c.patient_id == patient_id
            and c.service_date == service_date
            and c.billed_amount == billed_amount
            and c.created_at >= since
            and c.id != exclude_claim_id
        ]

    def record_analysis(
        self,
        claim_id: str,
        status: ClaimStatus,
        risk_score: float,
        risk_level: RiskLevel,
        fraud_types: Iterable[FraudType],
        alerts: Iterable[FraudAlert],
    ) -> None:
        with self._lock:
            claim = self._claims.get(claim_id)
            if claim is None:
                raise KeyError(claim_id)
            if claim.status.is_terminal:
                raise InvalidStatusTransitionError(claim_id, claim.status, status)
            self._claims[claim_id] = replace(
                claim,
                status=status,
                risk_score=risk_score,
                risk_level=risk_level,
                fraud_types=frozenset(fraud_types),
            )
            self._alerts[claim_id] = list(alerts)

    def get_alerts(self, claim_id: str) -> list[FraudAlert]:
        with self._lock:
            return list(self._alerts.get(claim_id, []))
