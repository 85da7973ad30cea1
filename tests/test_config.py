"""Tests for scoring configuration loading."""

import pytest

from claimrisk.config import DEFAULT_SCORING_CONFIG, load_scoring_config


class TestLoadScoringConfig:
    """Test YAML overrides of the scoring policy."""

    def test_no_path_returns_defaults(self, monkeypatch):
        """Test that no configured path gives the default policy."""
        monkeypatch.setattr("claimrisk.config.SCORING_CONFIG_PATH", None)

        assert load_scoring_config() is DEFAULT_SCORING_CONFIG

    def test_missing_file_returns_defaults(self, tmp_path):
        """Test that a missing file falls back to defaults."""
        assert load_scoring_config(tmp_path / "missing.yaml") is DEFAULT_SCORING_CONFIG

    def test_overrides(self, tmp_path):
        """Test that known keys override the defaults."""
        path = tmp_path / "scoring.yaml"
        path.write_text(
            "duplicate_window_days: 14\n"
            "critical_min: 90\n"
            "pattern_overrides:\n"
            "  MODIFIER_ABUSE:\n"
            "    enabled: false\n"
        )

        config = load_scoring_config(path)

        assert config.duplicate_window_days == 14
        assert config.critical_min == 90
        assert config.pattern_overrides == {"MODIFIER_ABUSE": {"enabled": False}}
        assert config.upcoding_lookback_days == 90

    def test_risk_weights_are_merged(self, tmp_path):
        """Test that partial weight overrides keep the other dimensions."""
        path = tmp_path / "scoring.yaml"
        path.write_text("risk_weights:\n  network: 0.4\n")

        config = load_scoring_config(path)

        assert config.weight_for("network") == 0.4
        assert config.weight_for("claim") == 0.30
        assert DEFAULT_SCORING_CONFIG.weight_for("network") == 0.20

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        """Test that unknown keys are logged and ignored."""
        path = tmp_path / "scoring.yaml"
        path.write_text("not_a_setting: 1\nbatch_size: 4\n")

        config = load_scoring_config(path)

        assert config.batch_size == 4
        assert "not_a_setting" in caplog.text

    def test_non_mapping_rejected(self, tmp_path):
        """Test that a YAML list is rejected."""
        path = tmp_path / "scoring.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError):
            load_scoring_config(path)

    def test_empty_file(self, tmp_path):
        """Test that an empty file gives the defaults."""
        path = tmp_path / "scoring.yaml"
        path.write_text("")

        assert load_scoring_config(path) == DEFAULT_SCORING_CONFIG
