"""External risk advisors blended into the rule-based score.

An advisor returns an untrusted numeric hint (score 0-100 plus a
confidence 0-1). The scoring engine blends it at a fixed weight and falls
back to the rule-based score whenever an advisor fails or times out.
"""

from __future__ import annotations

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import anthropic

from ..config import ADVISOR_MODEL, ADVISOR_TIMEOUT_SECONDS, ANTHROPIC_API_KEY_ENV
from ..errors import ExternalModelError
from ..models import Claim

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvisorScore:
    model: str
    score: float
    confidence: float
    reasoning: str = ""


class ExternalRiskAdvisor(ABC):
    """Capability interface for any external scorer."""

    name: str = "advisor"

    @abstractmethod
    def assess(self, claim: Claim, breakdown: dict[str, float]) -> AdvisorScore:
        """Score a claim. Raises ExternalModelError on any failure."""


def parse_structured_response(text: str) -> dict[str, Any] | None:
    """Extract a JSON object from a model reply.

    Handles fenced code blocks, bare JSON and JSON embedded in prose.
    """
    if not text:
        return None

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    candidates = [fenced.group(1).strip()] if fenced else []
    candidates.append(text.strip())
    embedded = re.search(r"\{[\s\S]*\}", text)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _bounded(value: Any, low: float, high: float, field_name: str, model: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ExternalModelError(model, f"non-numeric {field_name}: {value!r}") from e
    return max(low, min(high, number))


def format_claim_summary(claim: Claim, breakdown: dict[str, float]) -> str:
    lines = [
        f"Claim {claim.claim_number} for provider {claim.provider_id}",
        f"Service date: {claim.service_date.isoformat()}",
        f"Billed amount: {claim.billed_amount}",
        "Line items:",
    ]
    for item in claim.line_items:
        modifiers = ",".join(sorted(item.modifiers)) or "none"
        lines.append(
            f"- {item.procedure_code} x{item.units} @ {item.unit_cost} (modifiers: {modifiers})"
        )
    lines.append("Rule-based risk dimensions (0-100):")
    for dimension, score in breakdown.items():
        lines.append(f"- {dimension}: {score:.1f}")
    return "\n".join(lines)


class ClaudeRiskAdvisor(ExternalRiskAdvisor):
    """Asks a Claude model for a fraud-risk score in JSON."""

    name = "claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = ADVISOR_MODEL,
        timeout: float = ADVISOR_TIMEOUT_SECONDS,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self.model = model
        api_key = api_key or os.getenv(ANTHROPIC_API_KEY_ENV)
        if client is None and api_key:
            client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def assess(self, claim: Claim, breakdown: dict[str, float]) -> AdvisorScore:
        if self.client is None:
            raise ExternalModelError(self.model, "API key not configured")

        prompt = f"""You are a healthcare payment integrity analyst. Rate the fraud risk of this claim.

{format_claim_summary(claim, breakdown)}

Respond with JSON only: {{"score": <0-100>, "confidence": <0-1>, "reasoning": "<one sentence>"}}"""

        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=300,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise ExternalModelError(self.model, str(e)) from e

        text = response.content[0].text if response.content else ""
        parsed = parse_structured_response(text)
        if parsed is None or "score" not in parsed:
            raise ExternalModelError(self.model, "unparseable response")

        return AdvisorScore(
            model=self.model,
            score=_bounded(parsed["score"], 0.0, 100.0, "score", self.model),
            confidence=_bounded(parsed.get("confidence", 0.5), 0.0, 1.0, "confidence", self.model),
            reasoning=str(parsed.get("reasoning", "")),
        )


def default_advisors() -> list[ExternalRiskAdvisor]:
    """Advisors available in this environment; empty without an API key."""
    advisor = ClaudeRiskAdvisor()
    if not advisor.is_configured:
        logger.info("ANTHROPIC_API_KEY not set; scoring with rule-based dimensions only")
        return []
    return [advisor]
