"""Shared configuration for the claim risk engine.

Environment variables are read once here to prevent drift between
modules. Scoring policy constants live in ScoringConfig so deployments
can tune them through a YAML file instead of code changes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Database configuration
DB_PATH = os.getenv("DB_PATH", "./data/claimrisk.db")

# External risk advisor
ANTHROPIC_API_KEY_ENV = "ANTHROPIC_API_KEY"
ADVISOR_MODEL = os.getenv("ADVISOR_MODEL", "claude-sonnet-4-5-20250929")
ADVISOR_TIMEOUT_SECONDS = float(os.getenv("ADVISOR_TIMEOUT_SECONDS", "5"))

# Optional YAML file with ScoringConfig overrides
SCORING_CONFIG_PATH = os.getenv("SCORING_CONFIG_PATH")

# Provider network analysis runs on its own schedule (default: 02:00 UTC daily)
NETWORK_ANALYSIS_CRON = os.getenv("NETWORK_ANALYSIS_CRON", "0 2 * * *")
NETWORK_ANALYSIS_COMPANIES = [
    c.strip() for c in os.getenv("NETWORK_ANALYSIS_COMPANIES", "default").split(",") if c.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
RATE_LIMIT = os.getenv("RATE_LIMIT", "60/minute")


@dataclass(frozen=True)
class ScoringConfig:
    """Policy constants for detectors and the aggregation engine.

    Defaults reproduce the production policy. Every value is a product
    decision rather than a physical constant, so deployments may override
    any of them via load_scoring_config().
    """

    # Dimension weights for the aggregate score
    risk_weights: dict[str, float] = field(
        default_factory=lambda: {
            "provider": 0.25,
            "claim": 0.30,
            "patient": 0.15,
            "network": 0.20,
            "behavioral": 0.10,
        }
    )

    # Aggregate risk level lower bounds (inclusive)
    medium_min: float = 31
    high_min: float = 61
    critical_min: float = 81

    # Processor gates
    auto_approve_max_score: float = 30
    flagged_score_min: float = 70

    # Lookback windows in days
    upcoding_lookback_days: int = 90
    phantom_lookback_days: int = 90
    duplicate_window_days: int = 30
    network_lookback_days: int = 180
    scoring_lookback_days: int = 180
    recent_activity_days: int = 30

    # Detector thresholds
    upcoding_positive_min: float = 60
    phantom_positive_min: float = 70
    unbundling_alert_min: float = 50
    duplicate_confidence: float = 90
    service_radius_miles: float = 25
    geographic_distance_max: float = 100
    geographic_suspicious_count_max: int = 5
    daily_unit_hours_max: int = 8
    min_patient_sample: int = 5

    # External advisor blending
    advisor_rule_weight: float = 0.6
    advisor_model_weight: float = 0.4
    base_confidence: float = 0.75
    advisor_confidence_boost: float = 0.15
    max_confidence: float = 0.95
    advisor_timeout_seconds: float = ADVISOR_TIMEOUT_SECONDS

    # Batch scoring
    batch_size: int = 10

    # Per-pattern overrides: {"MODIFIER_ABUSE": {"enabled": False}, ...}
    pattern_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)

    def weight_for(self, dimension: str) -> float:
        return float(self.risk_weights.get(dimension, 0.0))


DEFAULT_SCORING_CONFIG = ScoringConfig()


def load_scoring_config(path: str | Path | None = None) -> ScoringConfig:
    """Load ScoringConfig overrides from a YAML file.

    Unknown keys are ignored with a warning. A missing path returns the
    defaults.
    """
    path = path or SCORING_CONFIG_PATH
    if not path:
        return DEFAULT_SCORING_CONFIG

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"Scoring config {config_path} not found, using defaults")
        return DEFAULT_SCORING_CONFIG

    with config_path.open() as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Scoring config {config_path} must be a mapping")

    known = {f.name for f in fields(ScoringConfig)}
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown scoring config key: {key}")
            continue
        overrides[key] = value

    if "risk_weights" in overrides:
        weights = dict(DEFAULT_SCORING_CONFIG.risk_weights)
        weights.update(overrides["risk_weights"])
        overrides["risk_weights"] = weights

    logger.info(f"Loaded scoring config from {config_path}")
    return replace(DEFAULT_SCORING_CONFIG, **overrides)
