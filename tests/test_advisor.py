"""Tests for the Claude risk advisor."""

from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from claimrisk.errors import ExternalModelError
from claimrisk.scoring import ClaudeRiskAdvisor, default_advisors
from claimrisk.scoring.advisor import format_claim_summary, parse_structured_response

BREAKDOWN = {"provider": 10.0, "claim": 3.0, "patient": 10.0, "network": 0.0, "behavioral": 0.0}


def mock_client(text: str) -> MagicMock:
    client = MagicMock()
    client.messages.create.return_value = MagicMock(content=[MagicMock(text=text)])
    return client


class TestParseStructuredResponse:
    """Test JSON extraction from model replies."""

    def test_fenced_block(self):
        """Test JSON inside a fenced code block."""
        text = 'Here you go:\n```json\n{"score": 40, "confidence": 0.7}\n```'

        assert parse_structured_response(text) == {"score": 40, "confidence": 0.7}

    def test_bare_json(self):
        """Test a bare JSON object."""
        assert parse_structured_response('{"score": 12}') == {"score": 12}

    def test_embedded_json(self):
        """Test JSON embedded in prose."""
        text = 'My assessment is {"score": 55, "reasoning": "odd mix"} overall.'

        assert parse_structured_response(text)["score"] == 55

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{not json}"])
    def test_unparseable(self, text):
        """Test that replies without a JSON object return None."""
        assert parse_structured_response(text) is None


class TestClaudeRiskAdvisor:
    """Test the advisor against a mocked anthropic client."""

    def test_assess(self, make_claim):
        """Test a well-formed reply."""
        client = mock_client('{"score": 72, "confidence": 0.8, "reasoning": "high-level visit"}')
        advisor = ClaudeRiskAdvisor(client=client, model="claude-test")

        score = advisor.assess(make_claim(), BREAKDOWN)

        assert score.model == "claude-test"
        assert score.score == 72
        assert score.confidence == 0.8
        assert score.reasoning == "high-level visit"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert "99213" in kwargs["messages"][0]["content"]

    def test_values_are_clamped(self, make_claim):
        """Test that out-of-range values are clamped."""
        advisor = ClaudeRiskAdvisor(client=mock_client('{"score": 250, "confidence": -1}'))

        score = advisor.assess(make_claim(), BREAKDOWN)

        assert score.score == 100.0
        assert score.confidence == 0.0

    def test_missing_confidence_defaults(self, make_claim):
        """Test that a reply without confidence gets 0.5."""
        advisor = ClaudeRiskAdvisor(client=mock_client('{"score": 20}'))

        assert advisor.assess(make_claim(), BREAKDOWN).confidence == 0.5

    @pytest.mark.parametrize(
        "text", ["I cannot help with that", '{"confidence": 0.9}', '{"score": "high"}']
    )
    def test_bad_reply_raises(self, make_claim, text):
        """Test that unusable replies raise ExternalModelError."""
        advisor = ClaudeRiskAdvisor(client=mock_client(text))

        with pytest.raises(ExternalModelError):
            advisor.assess(make_claim(), BREAKDOWN)

    def test_api_error_raises(self, make_claim):
        """Test that API errors are wrapped in ExternalModelError."""
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        advisor = ClaudeRiskAdvisor(client=client)

        with pytest.raises(ExternalModelError):
            advisor.assess(make_claim(), BREAKDOWN)

    def test_unconfigured(self, make_claim):
        """Test that an advisor without a key refuses to assess."""
        advisor = ClaudeRiskAdvisor()

        assert not advisor.is_configured
        with pytest.raises(ExternalModelError):
            advisor.assess(make_claim(), BREAKDOWN)


class TestDefaultAdvisors:
    """Test advisor discovery."""

    def test_no_key(self):
        """Test that no advisors are configured without an API key."""
        assert default_advisors() == []

    def test_with_key(self, monkeypatch):
        """Test that an API key enables the Claude advisor."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")

        advisors = default_advisors()

        assert [advisor.name for advisor in advisors] == ["claude"]


class TestFormatClaimSummary:
    """Test the prompt summary."""

    def test_includes_line_items_and_breakdown(self, make_claim, make_line):
        """Test that line items and dimension scores are listed."""
        claim = make_claim(line_items=(make_line("99214", modifiers=("25",)),))

        summary = format_claim_summary(claim, BREAKDOWN)

        assert "99214 x1 @ 75.00 (modifiers: 25)" in summary
        assert "- claim: 3.0" in summary
