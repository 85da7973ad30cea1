"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import pytest

# Never reach the real advisor from tests
os.environ.pop("ANTHROPIC_API_KEY", None)

from claimrisk.audit import InMemoryAuditLog
from claimrisk.models import (
    Claim,
    ClaimSubmission,
    LineItem,
    PatientRecord,
    ProviderRecord,
    ProviderType,
)
from claimrisk.store import InMemoryClaimStore, SQLiteClaimStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

SPRINGFIELD = (39.7817, -89.6501)
CHICAGO = (41.8781, -87.6298)


def line(
    code: str,
    unit_cost: str = "75.00",
    units: int = 1,
    modifiers: tuple[str, ...] = (),
    diagnosis_codes: tuple[str, ...] = ("J06.9",),
) -> LineItem:
    return LineItem(
        procedure_code=code,
        modifiers=frozenset(modifiers),
        units=units,
        unit_cost=Decimal(unit_cost),
        diagnosis_codes=diagnosis_codes,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryClaimStore:
    return InMemoryClaimStore()


@pytest.fixture
def sqlite_store(tmp_path) -> SQLiteClaimStore:
    return SQLiteClaimStore(str(tmp_path / "claims.db"))


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def make_line() -> Callable[..., LineItem]:
    """Factory for line items with sensible defaults."""
    return line


@pytest.fixture
def make_provider() -> Callable[..., ProviderRecord]:
    def _make(provider_id: str = "prov-1", **overrides: Any) -> ProviderRecord:
        fields: dict[str, Any] = {
            "npi": "1234567890",
            "name": "Springfield Family Practice",
            "specialty": "GENERAL_PRACTICE",
            "provider_type": ProviderType.PHYSICIAN,
            "address": "100 Main St",
            "phone": "217-555-0100",
            "city": "Springfield",
            "state": "IL",
            "latitude": SPRINGFIELD[0],
            "longitude": SPRINGFIELD[1],
            "company_id": "default",
        }
        fields.update(overrides)
        return ProviderRecord(id=provider_id, **fields)

    return _make


@pytest.fixture
def make_patient() -> Callable[..., PatientRecord]:
    def _make(patient_id: str, **overrides: Any) -> PatientRecord:
        fields: dict[str, Any] = {
            "date_of_birth": date(1980, 3, 15),
            "address": f"{patient_id} Oak Ave",
            "phone": "217-555-0199",
            "city": "Springfield",
            "state": "IL",
            "latitude": SPRINGFIELD[0] + 0.01,
            "longitude": SPRINGFIELD[1] + 0.01,
        }
        fields.update(overrides)
        return PatientRecord(id=patient_id, **fields)

    return _make


@pytest.fixture
def make_claim() -> Callable[..., Claim]:
    """Factory for persisted-shape claims created relative to NOW."""

    def _make(
        provider_id: str = "prov-1",
        patient_id: str = "pat-1",
        line_items: tuple[LineItem, ...] | None = None,
        days_ago: float = 1,
        service_date: date | None = None,
        company_id: str = "default",
        **overrides: Any,
    ) -> Claim:
        created_at = overrides.pop("created_at", NOW - timedelta(days=days_ago))
        return Claim(
            patient_id=patient_id,
            provider_id=provider_id,
            service_date=service_date or created_at.date(),
            line_items=line_items or (line("99213"),),
            company_id=company_id,
            created_at=created_at,
            **overrides,
        )

    return _make


@pytest.fixture
def provider(store, make_provider) -> ProviderRecord:
    return store.add_provider(make_provider())


@pytest.fixture
def patients(store, make_patient) -> list[PatientRecord]:
    """Five established local patients with complete demographics."""
    return [store.add_patient(make_patient(f"pat-{i}")) for i in range(1, 6)]


@pytest.fixture
def clean_submission() -> ClaimSubmission:
    """A routine office visit with no fraud indicators."""
    return ClaimSubmission(
        patient_id="pat-1",
        provider_id="prov-1",
        service_date=NOW.date(),
        line_items=(line("99213"),),
    )


@pytest.fixture
def shared_office(store, make_provider, patients, make_claim):
    """prov-a and prov-b share an address and phone; prov-c is unrelated."""
    store.add_provider(make_provider("prov-a"))
    store.add_provider(make_provider("prov-b"))
    store.add_provider(make_provider("prov-c", address="9 Elm St", phone="217-555-0999"))
    store.create_claim(make_claim(provider_id="prov-a", patient_id="pat-1", days_ago=1))
    store.create_claim(make_claim(provider_id="prov-b", patient_id="pat-2", days_ago=2))
    store.create_claim(make_claim(provider_id="prov-c", patient_id="pat-3", days_ago=3))
    return store


@pytest.fixture
def referral_pair(store, make_provider, patients, make_claim):
    """prov-a and prov-b see the same three patients three times each."""
    store.add_provider(make_provider("prov-a"))
    store.add_provider(make_provider("prov-b", address="9 Elm St", phone="217-555-0999"))
    for p, patient in enumerate(patients[:3]):
        for visit in range(3):
            offset = p * 3 + visit + 1
            store.create_claim(
                make_claim(provider_id="prov-a", patient_id=patient.id, days_ago=offset)
            )
            store.create_claim(
                make_claim(provider_id="prov-b", patient_id=patient.id, days_ago=offset + 10)
            )
    return store
