"""Tests for upcoding detection."""

from datetime import timedelta

import pytest

from claimrisk.config import ScoringConfig
from claimrisk.detectors import UpcodingDetector
from claimrisk.detectors.upcoding import build_coding_profile, deviation_score, specialty_benchmark
from claimrisk.models import FraudType, RiskLevel


@pytest.fixture
def high_level_biller(store, provider, patients, make_claim, make_line, now):
    """Ten 99215 visits over five patients, all within the last month."""
    for i in range(10):
        store.create_claim(
            make_claim(
                patient_id=patients[i % 5].id,
                line_items=(make_line("99215", unit_cost="150.00"),),
                days_ago=i + 1,
            )
        )
    return provider


class TestUpcodingDetector:
    """Test provider-level upcoding detection."""

    def test_consistent_high_level(self, store, high_level_biller, now):
        """Test that exclusively billing level 5 visits is upcoding."""
        result = UpcodingDetector(store).detect(high_level_biller.id, as_of=now)

        assert [hit.pattern_id for hit in result.patterns] == ["CONSISTENT_HIGH_LEVEL"]
        assert result.confidence == 75
        assert result.is_upcoding
        assert result.risk_level == RiskLevel.HIGH
        assert "ENHANCED_MONITORING" in result.audit_triggers
        assert "CONSISTENT_HIGH_LEVEL_DETECTED" in result.audit_triggers
        assert "Review medical record documentation for high-level E&M codes" in result.recommendations

    def test_profile_values(self, store, high_level_biller, now):
        """Test the coding profile behind the result."""
        profile = UpcodingDetector(store).detect(high_level_biller.id, as_of=now).profile

        assert profile.total_claims == 10
        assert profile.average_complexity == 5
        assert profile.high_level_frequency == 1.0
        assert profile.deviation_score == pytest.approx(66)

    def test_no_claims(self, store, provider, now):
        """Test that a provider without claims reports no data."""
        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert not result.is_upcoding
        assert result.confidence == 0.0
        assert result.risk_level == RiskLevel.LOW
        assert result.recommendations == ["No claims data available for analysis"]

    def test_lookback_window(self, store, provider, patients, make_claim, make_line, now):
        """Test that claims older than the lookback are ignored."""
        for i in range(5):
            store.create_claim(
                make_claim(
                    patient_id=patients[i].id,
                    line_items=(make_line("99215", unit_cost="150.00"),),
                    days_ago=100 + i,
                )
            )
        detector = UpcodingDetector(store)

        assert detector.detect(provider.id, as_of=now).confidence == 0.0
        assert detector.detect(provider.id, lookback_days=120, as_of=now).confidence == 75

    def test_modifier_abuse(self, store, provider, patients, make_claim, make_line, now):
        """Test that modifier 59 on most lines is flagged."""
        for i in range(5):
            store.create_claim(
                make_claim(
                    patient_id=patients[i].id,
                    line_items=(make_line("99213", modifiers=("59",)),),
                    days_ago=i + 1,
                )
            )

        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert [hit.pattern_id for hit in result.patterns] == ["MODIFIER_ABUSE"]
        assert result.confidence == 65
        assert result.is_upcoding
        assert "Review modifier usage for medical necessity" in result.recommendations

    def test_time_documentation_mismatch(self, store, provider, make_claim, make_line, now):
        """Test that a line billed far above its typical range is flagged."""
        store.create_claim(make_claim(line_items=(make_line("99213", unit_cost="200.00"),)))

        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert "TIME_DOCUMENTATION_MISMATCH" in [hit.pattern_id for hit in result.patterns]

    def test_bundling_evasion(self, store, provider, make_claim, make_line, now):
        """Test that a high-risk code combination on one claim is flagged."""
        store.create_claim(
            make_claim(
                line_items=(
                    make_line("43239", unit_cost="450.00"),
                    make_line("43235", unit_cost="300.00"),
                    make_line("43236", unit_cost="360.00"),
                )
            )
        )

        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert [hit.pattern_id for hit in result.patterns] == ["BUNDLING_EVASION"]
        assert result.confidence == 85
        assert "IMMEDIATE_AUDIT_REQUIRED" in result.audit_triggers

    @pytest.mark.parametrize(
        "visit_code, expected_patterns, expected_confidence",
        [
            ("99213", ["BUNDLING_EVASION"], 85),
            ("99215", ["CONSISTENT_HIGH_LEVEL", "BUNDLING_EVASION"], 90),
        ],
    )
    def test_higher_level_visits_never_lower_confidence(
        self,
        store,
        provider,
        patients,
        make_claim,
        make_line,
        now,
        visit_code,
        expected_patterns,
        expected_confidence,
    ):
        """Test that raising every visit to level 5 keeps confidence at or above the bundling score."""
        for i in range(8):
            store.create_claim(
                make_claim(
                    patient_id=patients[i % 5].id,
                    line_items=(make_line(visit_code, unit_cost="75.00"),),
                    days_ago=i + 1,
                )
            )
        store.create_claim(
            make_claim(
                line_items=(
                    make_line("43239", unit_cost="450.00"),
                    make_line("43235", unit_cost="300.00"),
                    make_line("43236", unit_cost="360.00"),
                ),
                days_ago=10,
            )
        )

        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert [hit.pattern_id for hit in result.patterns] == expected_patterns
        assert result.confidence == expected_confidence
        assert result.confidence >= 85

    def test_specialty_deviation(self, store, provider, patients, make_claim, make_line, now):
        """Test that level 5 visits with atypical modifiers deviate from the specialty."""
        for i in range(10):
            store.create_claim(
                make_claim(
                    patient_id=patients[i % 5].id,
                    line_items=(make_line("99215", unit_cost="150.00", modifiers=("78", "91")),),
                    days_ago=i + 1,
                )
            )

        result = UpcodingDetector(store).detect(provider.id, as_of=now)

        assert result.profile.deviation_score == pytest.approx(86)
        assert [hit.pattern_id for hit in result.patterns] == [
            "CONSISTENT_HIGH_LEVEL",
            "SPECIALTY_DEVIATION",
        ]
        assert result.confidence == 80
        assert "Compare coding patterns with specialty peers" in result.recommendations

    def test_back_dated_analysis_ignores_later_claims(self, store, high_level_biller, now):
        """Test that claims created after as_of are not part of the profile."""
        as_of = now - timedelta(days=5)

        result = UpcodingDetector(store).detect(high_level_biller.id, as_of=as_of)

        # days_ago 5 through 10 fall inside [as_of - 90 days, as_of]
        assert result.profile.total_claims == 6

    def test_disabled_pattern(self, store, high_level_biller, now):
        """Test that a disabled pattern does not contribute."""
        config = ScoringConfig(pattern_overrides={"CONSISTENT_HIGH_LEVEL": {"enabled": False}})

        result = UpcodingDetector(store, config).detect(high_level_biller.id, as_of=now)

        assert result.patterns == []
        assert not result.is_upcoding

    def test_detect_requires_store(self):
        """Test that detect() without a store is a programming error."""
        with pytest.raises(RuntimeError):
            UpcodingDetector().detect("prov-1")

    def test_to_alert(self, store, high_level_biller, now):
        """Test conversion to a fraud alert."""
        alert = UpcodingDetector(store).detect(high_level_biller.id, as_of=now).to_alert()

        assert alert.type == FraudType.UPCODING
        assert alert.severity == RiskLevel.HIGH
        assert alert.confidence == 75
        assert alert.details["patterns"][0]["pattern"] == "CONSISTENT_HIGH_LEVEL"


class TestCodingProfile:
    """Test coding profile helpers."""

    def test_no_em_codes_uses_default_complexity(self, make_claim, make_line):
        """Test that a profile without E&M codes assumes complexity 3."""
        profile = build_coding_profile(
            "prov-1", "GENERAL_PRACTICE", [make_claim(line_items=(make_line("80053"),))]
        )

        assert profile.average_complexity == 3.0
        assert profile.high_level_frequency == 0.0

    def test_unknown_specialty_falls_back(self):
        """Test that an unknown specialty uses the general practice benchmark."""
        assert specialty_benchmark("ASTROLOGY").specialty == "GENERAL_PRACTICE"
        assert specialty_benchmark(None).specialty == "GENERAL_PRACTICE"

    def test_deviation_score_unusual_modifiers(self):
        """Test that modifiers atypical for the specialty add to the deviation."""
        benchmark = specialty_benchmark("GENERAL_PRACTICE")

        assert deviation_score(3.2, 0.0, {"78": 3, "91": 1}, benchmark) == 20
        assert deviation_score(3.2, 0.0, {"25": 3}, benchmark) == 0
