"""Tests for duplicate claim and unbundling detection."""

from datetime import date

import pytest

from claimrisk.detectors import DuplicateClaimDetector, UnbundlingDetector
from claimrisk.models import FraudType, RiskLevel

SERVICE_DATE = date(2024, 5, 1)


class TestDuplicateClaimDetector:
    """Test duplicate detection within the trailing window."""

    def test_identical_claim_is_duplicate(self, store, make_claim):
        """Test that an identical claim 10 days earlier is a duplicate."""
        original = store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=10))
        resubmitted = store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=0))

        alert = DuplicateClaimDetector(store).detect(resubmitted)

        assert alert.type == FraudType.DUPLICATE_CLAIM
        assert alert.severity == RiskLevel.HIGH
        assert alert.confidence == 90
        assert alert.details["duplicate_claim_ids"] == [original.id]

    @pytest.mark.parametrize("days_apart, expected", [(29, 90.0), (31, 0.0)])
    def test_window_boundary(self, store, make_claim, days_apart, expected):
        """Test that only claims within 30 days count."""
        store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=days_apart))
        current = store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=0))

        assert DuplicateClaimDetector(store).detect(current).confidence == expected

    def test_relation_is_symmetric(self, store, make_claim):
        """Test that the earlier claim also sees the later one."""
        earlier = store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=10))
        later = store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=0))
        detector = DuplicateClaimDetector(store)

        assert detector.detect(earlier).details["duplicate_claim_ids"] == [later.id]
        assert detector.detect(later).details["duplicate_claim_ids"] == [earlier.id]

    def test_claim_does_not_match_itself(self, store, make_claim):
        """Test that a lone claim is never its own duplicate."""
        claim = store.create_claim(make_claim(service_date=SERVICE_DATE))

        alert = DuplicateClaimDetector(store).detect(claim)

        assert alert.confidence == 0.0
        assert alert.severity == RiskLevel.LOW

    @pytest.mark.parametrize(
        "field, value",
        [
            ("patient_id", "pat-2"),
            ("provider_id", "prov-2"),
            ("service_date", date(2024, 5, 2)),
        ],
    )
    def test_any_difference_is_not_duplicate(self, store, make_claim, field, value):
        """Test that claims differing on a key field are not duplicates."""
        store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=5))
        kwargs = {"service_date": SERVICE_DATE, "days_ago": 0, field: value}
        current = store.create_claim(make_claim(**kwargs))

        assert DuplicateClaimDetector(store).detect(current).confidence == 0.0

    def test_different_amount_is_not_duplicate(self, store, make_claim, make_line):
        """Test that a different billed amount is not a duplicate."""
        store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=5))
        current = store.create_claim(
            make_claim(
                service_date=SERVICE_DATE,
                days_ago=0,
                line_items=(make_line("99213", unit_cost="80.00"),),
            )
        )

        assert DuplicateClaimDetector(store).detect(current).confidence == 0.0

    def test_sqlite_store(self, sqlite_store, make_claim):
        """Test duplicate detection against the SQLite store."""
        original = sqlite_store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=3))
        current = sqlite_store.create_claim(make_claim(service_date=SERVICE_DATE, days_ago=0))

        alert = DuplicateClaimDetector(sqlite_store).detect(current)

        assert alert.details["duplicate_claim_ids"] == [original.id]


class TestUnbundlingDetector:
    """Test single-claim unbundling detection."""

    def test_endoscopy_unbundling(self, make_line):
        """Test that the endoscopy triple raises a critical alert."""
        alert = UnbundlingDetector().detect(
            [make_line("43239"), make_line("43235"), make_line("43236")]
        )

        assert alert.type == FraudType.UNBUNDLING
        assert alert.confidence == 90
        assert alert.severity == RiskLevel.CRITICAL
        assert alert.details["procedure_codes"] == ["43235", "43236", "43239"]

    def test_duplicate_e_and_m(self, make_line):
        """Test that two E&M levels raise a critical alert."""
        alert = UnbundlingDetector().detect([make_line("99213"), make_line("99214")])

        assert alert.confidence == 85
        assert "Multiple E&M codes for same encounter" in alert.details["warnings"]

    def test_clean_claim(self, make_line):
        """Test that a single office visit carries no unbundling risk."""
        alert = UnbundlingDetector().detect([make_line("99213")])

        assert alert.confidence == 0.0
        assert alert.severity == RiskLevel.LOW
