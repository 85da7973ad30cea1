"""Tests for the claim domain models."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

import pytest

from claimrisk.errors import InputValidationError
from claimrisk.models import (
    Claim,
    ClaimAnalysisResult,
    ClaimStatus,
    ClaimSubmission,
    FraudAlert,
    FraudType,
    LineItem,
    PatientRecord,
    RiskLevel,
    billed_amount,
    generate_claim_number,
)


class TestLineItem:
    """Test line item validation."""

    def test_blank_procedure_code_rejected(self):
        """Test that a blank procedure code is rejected."""
        with pytest.raises(InputValidationError) as exc_info:
            LineItem(procedure_code="  ")

        assert exc_info.value.field == "procedure_code"

    def test_more_than_four_modifiers_rejected(self):
        """Test that at most four modifiers are allowed."""
        with pytest.raises(InputValidationError):
            LineItem(procedure_code="99213", modifiers=frozenset({"25", "59", "57", "78", "91"}))

    def test_non_positive_units_rejected(self):
        """Test that units must be a positive integer."""
        with pytest.raises(InputValidationError):
            LineItem(procedure_code="99213", units=0)

    def test_negative_unit_cost_rejected(self):
        """Test that unit cost must be non-negative."""
        with pytest.raises(InputValidationError):
            LineItem(procedure_code="99213", unit_cost=Decimal("-1"))

    @pytest.mark.parametrize("cost", ["NaN", "Infinity", "-Infinity", Decimal("NaN"), float("inf")])
    def test_non_finite_unit_cost_rejected(self, cost):
        """Test that NaN and infinite costs are rejected as validation errors."""
        with pytest.raises(InputValidationError) as exc_info:
            LineItem(procedure_code="99213", unit_cost=cost)

        assert exc_info.value.field == "unit_cost"

    @pytest.mark.parametrize("modifiers", [(25,), ("25", None), "25"])
    def test_non_string_modifiers_rejected(self, modifiers):
        """Test that modifiers must be a collection of strings."""
        with pytest.raises(InputValidationError) as exc_info:
            LineItem(procedure_code="99213", modifiers=modifiers)

        assert exc_info.value.field == "modifiers"

    def test_more_than_four_diagnosis_codes_rejected(self):
        """Test that at most four diagnosis codes are allowed."""
        with pytest.raises(InputValidationError):
            LineItem(procedure_code="99213", diagnosis_codes=("A", "B", "C", "D", "E"))

    def test_modifier_order_does_not_matter(self):
        """Test that modifiers are compared as a set."""
        first = LineItem(procedure_code="99213", modifiers=frozenset(["25", "59"]))
        second = LineItem(procedure_code="99213", modifiers=frozenset(["59", "25"]))

        assert first == second

    def test_float_cost_keeps_printed_value(self):
        """Test that float costs convert without binary rounding noise."""
        item = LineItem(procedure_code="99213", unit_cost=0.1, units=3)

        assert item.total_cost == Decimal("0.3")

    def test_dict_round_trip(self, make_line):
        """Test that to_dict/from_dict preserve the line item."""
        item = make_line("99214", unit_cost="110.50", units=2, modifiers=("25",))

        assert LineItem.from_dict(item.to_dict()) == item


class TestClaimSubmission:
    """Test claim submission validation."""

    def test_requires_line_items(self):
        """Test that a submission without line items is rejected."""
        with pytest.raises(InputValidationError) as exc_info:
            ClaimSubmission(
                patient_id="pat-1",
                provider_id="prov-1",
                service_date=date(2024, 6, 1),
                line_items=(),
            )

        assert exc_info.value.field == "line_items"

    def test_requires_patient_id(self, make_line):
        """Test that a submission without a patient is rejected."""
        with pytest.raises(InputValidationError):
            ClaimSubmission(
                patient_id="",
                provider_id="prov-1",
                service_date=date(2024, 6, 1),
                line_items=(make_line("99213"),),
            )

    def test_billed_amount_is_exact(self, make_line):
        """Test that billed amount is the exact decimal sum of line totals."""
        submission = ClaimSubmission(
            patient_id="pat-1",
            provider_id="prov-1",
            service_date=date(2024, 6, 1),
            line_items=(
                make_line("99213", unit_cost="0.10", units=3),
                make_line("80053", unit_cost="45.05"),
            ),
        )

        assert submission.billed_amount == Decimal("45.35")
        assert billed_amount(submission.line_items) == submission.billed_amount


class TestClaim:
    """Test persisted claim helpers."""

    def test_claim_number_format(self):
        """Test that claim numbers follow CLM-<millis>-<5 alnum>."""
        assert re.fullmatch(r"CLM-\d+-[A-Z0-9]{5}", generate_claim_number())

    def test_from_submission_starts_pending(self, clean_submission):
        """Test that a new claim starts PENDING with its billed amount."""
        claim = Claim.from_submission(clean_submission)

        assert claim.status is ClaimStatus.PENDING
        assert claim.billed_amount == Decimal("75.00")
        assert claim.created_at.tzinfo is not None

    def test_is_flagged_above_70(self, make_claim):
        """Test that is_flagged is true only above a score of 70."""
        assert not make_claim(risk_score=70).is_flagged
        assert make_claim(risk_score=70.5).is_flagged

    def test_status_terminality(self):
        """Test that only PENDING is non-terminal."""
        assert not ClaimStatus.PENDING.is_terminal
        assert ClaimStatus.APPROVED.is_terminal
        assert ClaimStatus.FLAGGED_FOR_FRAUD.is_terminal


class TestPatientRecord:
    """Test patient helpers."""

    def test_age_before_birthday(self):
        """Test that age is not incremented before the birthday."""
        patient = PatientRecord(id="p", date_of_birth=date(1980, 6, 2))

        assert patient.age(date(2024, 6, 1)) == 43
        assert patient.age(date(2024, 6, 2)) == 44

    def test_incomplete_demographics(self):
        """Test that a missing phone makes demographics incomplete."""
        patient = PatientRecord(id="p", date_of_birth=date(1980, 1, 1), address="1 Oak Ave")

        assert not patient.has_complete_demographics


class TestClaimAnalysisResult:
    """Test analysis result serialization."""

    def test_to_dict(self):
        """Test that to_dict serializes enums and alerts."""
        alert = FraudAlert(
            type=FraudType.DUPLICATE_CLAIM,
            severity=RiskLevel.HIGH,
            confidence=90.0,
            description="Potential duplicate claim detected",
        )
        result = ClaimAnalysisResult(
            claim_id="c1",
            claim_number="CLM-1-ABCDE",
            risk_score=90.0,
            risk_level=RiskLevel.CRITICAL,
            fraud_types=[FraudType.DUPLICATE_CLAIM],
            alerts=[alert],
            recommendations=["Review claim submission history"],
            approved=False,
        )

        data = result.to_dict()

        assert data["status"] == "FLAGGED_FOR_FRAUD"
        assert data["risk_level"] == "CRITICAL"
        assert data["fraud_types"] == ["DUPLICATE_CLAIM"]
        assert data["alerts"][0]["type"] == "DUPLICATE_CLAIM"
