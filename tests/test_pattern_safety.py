"""
Tests for oracle output parsing, the safety filter and dry-run verification
"""

from types import SimpleNamespace
from unittest.mock import Mock, patch

import pybreaker
import pytest

from app.exceptions import OracleError
from app.services.pattern_learning.dry_run import (
    DryRunResult,
    apply_verification,
    dry_run_records,
    verify_candidates,
)
from app.services.pattern_learning.oracle import (
    ClaudeOracle,
    VerificationDecision,
    parse_json_response,
    propose_patterns,
    verify_patterns,
)
from app.services.pattern_learning.safety import (
    PatternCandidate,
    filter_candidates,
    is_generic_pattern,
)

from tests.conftest import FakeOracle


class TestGenericPatterns:
    """Banking vocabulary detection."""

    def test_generic_only(self):
        assert is_generic_pattern("*rechnung*") is True
        assert is_generic_pattern("*sepa*lastschrift*") is True
        assert is_generic_pattern("*rechn*nr*") is True

    def test_specific_token_passes(self):
        assert is_generic_pattern("*amazon*rechnung*") is False
        assert is_generic_pattern("*bicycle*") is False

    def test_wildcard_only_is_not_generic(self):
        """A bare wildcard has no tokens; it is left to the dry run."""
        assert is_generic_pattern("*") is False


class TestFilterCandidates:
    """Safety filter over oracle proposals."""

    def test_normalizes_and_dedups(self):
        report = filter_candidates([
            {"pattern": "  AMAZON* ", "confidence": 94.6},
            {"pattern": "amazon*", "confidence": 80},
        ])
        assert [(c.pattern, c.confidence) for c in report.accepted] == [("amazon*", 95)]

    def test_malformed_and_weak_rejected(self):
        report = filter_candidates([
            {"pattern": "", "confidence": 90},
            {"pattern": "x*", "confidence": "high"},
            {"pattern": "weak*", "confidence": 40},
            "amazon*",
        ])
        assert report.accepted == []
        assert len(report.rejected) == 4

    def test_rejects_removed_record_match(self):
        """A pattern matching a transaction the user removed is a false positive."""
        report = filter_candidates(
            [{"pattern": "*paypal*", "confidence": 90}, {"pattern": "*netflix*", "confidence": 90}],
            removals=[{"transaction_id": "t9", "name": "PAYPAL *SPOTIFY", "partner": None}],
        )
        assert [c.pattern for c in report.accepted] == ["*netflix*"]
        assert report.rejected[0][0] == "*paypal*"

    def test_rejects_pattern_matching_removed_record_by_partner_field_alone(self):
        report = filter_candidates(
            [{"pattern": "shop*", "confidence": 90}],
            removals=[{"transaction_id": "t9", "name": "PAYPAL", "partner": "SHOP GMBH"}],
        )
        assert report.accepted == []
        assert report.rejected[0][0] == "shop*"

    def test_rejects_collision_with_other_partner(self):
        report = filter_candidates(
            [{"pattern": "amazon*", "confidence": 95}],
            collisions=[{"name": "AMAZON WEB SERVICES", "partner": None,
                         "assigned_partner_id": "p2", "assigned_partner_name": "AWS"}],
        )
        assert report.accepted == []
        assert "AWS" in report.rejected[0][1]

    def test_rejects_generic(self):
        report = filter_candidates([{"pattern": "*rechnung*", "confidence": 90}])
        assert report.rejected == [("*rechnung*", "generic banking terms only")]


class TestParseJsonResponse:
    """Permissive JSON extraction."""

    def test_plain(self):
        assert parse_json_response('{"patterns": []}') == {"patterns": []}

    def test_fenced(self):
        assert parse_json_response('Here:\n```json\n{"patterns": [1]}\n```') == {"patterns": [1]}

    def test_prose_around_object(self):
        assert parse_json_response('Sure! {"a": 1} Hope that helps.') == {"a": 1}

    def test_garbage(self):
        assert parse_json_response("no json here") is None
        assert parse_json_response("[1, 2]") is None
        assert parse_json_response("") is None


class TestOracleRounds:
    """Proposal and verification rounds never raise."""

    def test_proposal_items(self):
        result = propose_patterns(FakeOracle({"patterns": [{"pattern": "amazon*", "confidence": 95}]}), "prompt")
        assert result.ok
        assert result.items == [{"pattern": "amazon*", "confidence": 95}]

    def test_oracle_error_captured(self):
        result = propose_patterns(FakeOracle(OracleError("circuit_open")), "prompt")
        assert not result.ok
        assert result.error.reason == "circuit_open"

    def test_unparsable(self):
        result = propose_patterns(FakeOracle("I cannot help with that"), "prompt")
        assert result.error.reason == "unparsable_response"

    def test_missing_key_is_an_error(self):
        result = propose_patterns(FakeOracle({"something": "else"}), "prompt")
        assert result.error.reason == "missing_items"

    def test_wrong_type_is_an_error(self):
        result = propose_patterns(FakeOracle({"patterns": "amazon*"}), "prompt")
        assert result.error.reason == "missing_items"

    def test_explicit_empty_list(self):
        result = propose_patterns(FakeOracle({"patterns": []}), "prompt")
        assert result.ok and result.items == []

    def test_verification_drops_invalid_entries(self):
        oracle = FakeOracle({"verified": [
            {"pattern": "amazon*", "approved": False, "reason": "too broad"},
            {"approved": True},
            {"pattern": "amzn*", "adjustedConfidence": 80},
        ]})
        result = verify_patterns(oracle, "prompt")
        assert [d.pattern for d in result.items] == ["amazon*", "amzn*"]
        assert result.items[1].adjusted_confidence == 80


class TestClaudeOracle:
    """Anthropic client wrapper."""

    def _client(self, text=None, side_effect=None):
        client = Mock()
        if side_effect is not None:
            client.messages.create.side_effect = side_effect
        else:
            client.messages.create.return_value = SimpleNamespace(
                content=[SimpleNamespace(text=text)],
                usage=SimpleNamespace(input_tokens=10, output_tokens=5),
            )
        return client

    def test_returns_text(self):
        breaker = pybreaker.CircuitBreaker(fail_max=5)
        with patch("app.services.pattern_learning.oracle.get_claude_breaker", return_value=breaker):
            oracle = ClaudeOracle(client=self._client('{"patterns": []}'), model="test-model")
            assert oracle.complete("system", "prompt") == '{"patterns": []}'
        kwargs = oracle.client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["system"] == "system"

    def test_request_failure(self):
        breaker = pybreaker.CircuitBreaker(fail_max=5)
        with patch("app.services.pattern_learning.oracle.get_claude_breaker", return_value=breaker):
            oracle = ClaudeOracle(client=self._client(side_effect=RuntimeError("boom")))
            with pytest.raises(OracleError) as exc:
                oracle.complete("system", "prompt")
        assert exc.value.reason == "request_failed"

    def test_open_circuit(self):
        breaker = pybreaker.CircuitBreaker(fail_max=5)
        breaker.open()
        client = self._client("{}")
        with patch("app.services.pattern_learning.oracle.get_claude_breaker", return_value=breaker):
            with pytest.raises(OracleError) as exc:
                ClaudeOracle(client=client).complete("system", "prompt")
        assert exc.value.reason == "circuit_open"
        client.messages.create.assert_not_called()

    def test_empty_content(self):
        breaker = pybreaker.CircuitBreaker(fail_max=5)
        client = Mock()
        client.messages.create.return_value = SimpleNamespace(content=[], usage=None)
        with patch("app.services.pattern_learning.oracle.get_claude_breaker", return_value=breaker):
            with pytest.raises(OracleError) as exc:
                ClaudeOracle(client=client).complete("system", "prompt")
        assert exc.value.reason == "empty_response"


def record(id, name, partner=None, partner_id=None):
    return SimpleNamespace(id=id, name=name, partner=partner, reference=None, partner_id=partner_id)


class TestDryRun:
    """Corpus dry run and verification."""

    def test_classifies_conflicts(self):
        candidates = [PatternCandidate("amazon*", 95)]
        results = dry_run_records(
            [record("t1", "AMAZON MKTP"), record("t2", "AMAZON WEB SERVICES", partner_id="p2"),
             record("t3", "REWE"), record("t4", "AMAZON", partner_id="p1")],
            "p1", candidates, {"p2": "AWS"},
        )
        result = results["amazon*"]
        assert [m.id for m in result.unassigned] == ["t1", "t4"]
        assert [(m.id, m.other_partner_name) for m in result.conflicts] == [("t2", "AWS")]

    def test_broadness(self):
        result = DryRunResult("x*", matches=[object()] * 4)
        assert result.is_broad(100) is True
        assert result.is_broad(1000) is False

    def test_apply_verification(self):
        candidates = [PatternCandidate("amazon*", 95), PatternCandidate("amzn*", 90), PatternCandidate("*mktp*", 85)]
        decisions = [
            VerificationDecision(pattern="AMAZON*", approved=False, reason="too broad"),
            VerificationDecision(pattern="amzn*", adjusted_confidence=120),
        ]
        verified = apply_verification(candidates, decisions)
        assert [(c.pattern, c.confidence) for c in verified] == [("amzn*", 100), ("*mktp*", 85)]

    def test_verification_fails_open(self):
        """An unusable verification reply keeps every safe candidate."""
        candidates = [PatternCandidate("amazon*", 95)]
        verified = verify_candidates(FakeOracle("not json"), "Amazon", candidates, {}, 10)
        assert verified == candidates
