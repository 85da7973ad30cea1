"""Tests for the in-memory and SQLite claim stores."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from claimrisk.errors import InvalidStatusTransitionError
from claimrisk.models import ClaimStatus, FraudAlert, FraudType, ProviderType, RiskLevel
from claimrisk.store import InMemoryClaimStore, SQLiteClaimStore


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Each test runs against both store implementations."""
    if request.param == "memory":
        return InMemoryClaimStore()
    return SQLiteClaimStore(str(tmp_path / "store.db"))


def _alert(confidence=90.0):
    return FraudAlert(
        type=FraudType.DUPLICATE_CLAIM,
        severity=RiskLevel.HIGH,
        confidence=confidence,
        description="Potential duplicate claim detected",
        details={"duplicate_claim_ids": ["other"]},
        detection_model="DuplicateClaimDetector-v1",
    )


class TestReferenceData:
    """Test provider and patient records."""

    def test_provider_round_trip(self, any_store, make_provider):
        """Test that a provider reads back unchanged."""
        provider = make_provider(provider_type=ProviderType.LABORATORY)
        any_store.add_provider(provider)

        assert any_store.get_provider(provider.id) == provider

    def test_patient_round_trip(self, any_store, make_patient):
        """Test that a patient reads back unchanged."""
        patient = make_patient("pat-9")
        any_store.add_patient(patient)

        assert any_store.get_patient("pat-9") == patient

    def test_unknown_records(self, any_store):
        """Test that unknown ids return None."""
        assert any_store.get_provider("missing") is None
        assert any_store.get_patient("missing") is None
        assert any_store.get_claim("missing") is None

    def test_list_providers_by_company(self, any_store, make_provider):
        """Test that providers are listed per company."""
        any_store.add_provider(make_provider("a"))
        any_store.add_provider(make_provider("b", company_id="other"))

        assert [p.id for p in any_store.list_providers("default")] == ["a"]

    def test_active_providers(self, any_store, make_provider, make_claim, now):
        """Test that only providers with recent claims are active."""
        any_store.add_provider(make_provider("a"))
        any_store.add_provider(make_provider("b"))
        any_store.create_claim(make_claim(provider_id="a", days_ago=5))
        any_store.create_claim(make_claim(provider_id="b", days_ago=60))

        active = any_store.active_providers("default", now - timedelta(days=30))

        assert [p.id for p in active] == ["a"]


class TestClaims:
    """Test claim persistence and queries."""

    def test_claim_round_trip(self, any_store, make_claim, make_line):
        """Test that a claim reads back with exact amounts."""
        claim = make_claim(
            line_items=(
                make_line("99214", unit_cost="110.10", units=2, modifiers=("25",)),
                make_line("80053", unit_cost="45.05"),
            )
        )
        any_store.create_claim(claim)

        stored = any_store.get_claim(claim.id)

        assert stored.claim_number == claim.claim_number
        assert stored.line_items == claim.line_items
        assert stored.billed_amount == Decimal("265.25")
        assert stored.created_at == claim.created_at
        assert stored.status is ClaimStatus.PENDING

    def test_provider_claims_since(self, any_store, make_claim, now):
        """Test that provider claims honour the since bound."""
        recent = any_store.create_claim(make_claim(days_ago=5))
        any_store.create_claim(make_claim(days_ago=50))
        any_store.create_claim(make_claim(provider_id="prov-2", days_ago=5))

        claims = any_store.provider_claims("prov-1", now - timedelta(days=30))

        assert [c.id for c in claims] == [recent.id]

    def test_patient_claims_since(self, any_store, make_claim, now):
        """Test that patient claims honour the since bound."""
        recent = any_store.create_claim(make_claim(days_ago=1))
        any_store.create_claim(make_claim(patient_id="pat-2", days_ago=1))

        claims = any_store.patient_claims("pat-1", now - timedelta(days=30))

        assert [c.id for c in claims] == [recent.id]

    def test_claims_until_bound(self, any_store, make_claim, now):
        """Test that the optional until bound is inclusive and excludes later claims."""
        older = any_store.create_claim(make_claim(days_ago=10))
        boundary = any_store.create_claim(make_claim(days_ago=5))
        any_store.create_claim(make_claim(days_ago=1))
        since = now - timedelta(days=30)
        until = now - timedelta(days=5)

        assert [c.id for c in any_store.provider_claims("prov-1", since, until=until)] == [
            older.id,
            boundary.id,
        ]
        assert [c.id for c in any_store.patient_claims("pat-1", since, until=until)] == [
            older.id,
            boundary.id,
        ]
        assert len(any_store.provider_claims("prov-1", since)) == 3

    def test_find_matching_claims(self, any_store, make_claim, now):
        """Test lookup of identical claims, excluding the claim itself."""
        first = any_store.create_claim(make_claim(service_date=date(2024, 5, 1), days_ago=3))
        second = any_store.create_claim(make_claim(service_date=date(2024, 5, 1), days_ago=1))

        matches = any_store.find_matching_claims(
            provider_id="prov-1",
            patient_id="pat-1",
            service_date=date(2024, 5, 1),
            billed_amount=Decimal("75"),
            since=now - timedelta(days=30),
            exclude_claim_id=second.id,
        )

        assert [c.id for c in matches] == [first.id]


class TestRecordAnalysis:
    """Test the single atomic status transition."""

    def test_finalises_pending_claim(self, any_store, make_claim):
        """Test that analysis moves a claim to its terminal status with alerts."""
        claim = any_store.create_claim(make_claim())

        any_store.record_analysis(
            claim.id,
            ClaimStatus.FLAGGED_FOR_FRAUD,
            90.0,
            RiskLevel.CRITICAL,
            [FraudType.DUPLICATE_CLAIM],
            [_alert()],
        )

        stored = any_store.get_claim(claim.id)
        assert stored.status is ClaimStatus.FLAGGED_FOR_FRAUD
        assert stored.risk_score == 90.0
        assert stored.risk_level is RiskLevel.CRITICAL
        assert stored.fraud_types == {FraudType.DUPLICATE_CLAIM}
        alerts = any_store.get_alerts(claim.id)
        assert len(alerts) == 1
        assert alerts[0].details == {"duplicate_claim_ids": ["other"]}
        assert alerts[0].detection_model == "DuplicateClaimDetector-v1"

    def test_terminal_claim_cannot_transition(self, any_store, make_claim):
        """Test that a finalised claim rejects a second analysis."""
        claim = any_store.create_claim(make_claim())
        any_store.record_analysis(claim.id, ClaimStatus.APPROVED, 5.0, RiskLevel.LOW, [], [])

        with pytest.raises(InvalidStatusTransitionError):
            any_store.record_analysis(
                claim.id, ClaimStatus.FLAGGED_FOR_FRAUD, 90.0, RiskLevel.CRITICAL, [], [_alert()]
            )

        assert any_store.get_claim(claim.id).status is ClaimStatus.APPROVED
        assert any_store.get_alerts(claim.id) == []

    def test_unknown_claim(self, any_store):
        """Test that analysing an unknown claim raises KeyError."""
        with pytest.raises(KeyError):
            any_store.record_analysis("missing", ClaimStatus.APPROVED, 0.0, RiskLevel.LOW, [], [])


class TestSQLiteClaimStore:
    """Test SQLite-specific behaviour."""

    def test_data_survives_reopen(self, tmp_path, make_claim):
        """Test that a second store on the same file sees earlier writes."""
        path = str(tmp_path / "nested" / "claims.db")
        claim = SQLiteClaimStore(path).create_claim(make_claim())

        assert SQLiteClaimStore(path).get_claim(claim.id).claim_number == claim.claim_number
