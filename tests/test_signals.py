"""
Tests for the signal scorer and match ranking (pure, no database)
"""

from app.services.matching.records import (
    PARTNER_TYPE_GLOBAL,
    PARTNER_TYPE_USER,
    MatchRecord,
    PartnerMatch,
    PartnerProfile,
    PatternRule,
    pattern_rules,
)
from app.services.matching.signals import company_name_similarity, score_partner
from app.services.partner_matcher import match_record, rank_matches, should_auto_apply


def profile(name, partner_type=PARTNER_TYPE_USER, pid="p1", **kwargs):
    return PartnerProfile(id=pid, partner_type=partner_type, name=name, **kwargs)


class TestScorePartner:
    """One record against one partner."""

    def test_iban_short_circuits(self):
        """Exact IBAN is 100 regardless of spacing."""
        record = MatchRecord(id="t1", name="Miete", partner_iban="DE89 3704 0044 0532 0130 00")
        partner = profile("Hausverwaltung", ibans=["DE89370400440532013000"])
        result = score_partner(record, partner)
        assert result.confidence == 100
        assert result.source == "iban"

    def test_learned_pattern_confidence_unadjusted(self):
        """amazon* at 95 scores exactly 95."""
        record = MatchRecord(id="t1", name="AMAZON")
        partner = profile("Amazon", patterns=[PatternRule("amazon*", 95)])
        result = score_partner(record, partner)
        assert result.confidence == 95
        assert result.source == "pattern"

    def test_name_containment_stays_below_threshold(self):
        """A contained name alone only suggests."""
        record = MatchRecord(id="t1", partner="AMAZON EU SARL")
        result = score_partner(record, profile("Amazon"))
        assert result.source == "name"
        assert 60 <= result.confidence < 89

    def test_name_and_alias_boost(self):
        """Name plus alias is the only way a name signal exceeds 90."""
        record = MatchRecord(id="t1", partner="AMZN Mktp DE Amazon")
        result = score_partner(record, profile("Amazon", aliases=["AMZN Mktp"]))
        assert result.source == "name"
        assert 92 <= result.confidence <= 95

    def test_website_in_text(self):
        """Partner domain inside the bank text scores 90."""
        record = MatchRecord(id="t1", name="NETFLIX.COM 866-579")
        result = score_partner(record, profile("Netflix", website="https://www.netflix.com/"))
        assert result.confidence == 90
        assert result.source == "website"

    def test_static_pattern_exclude(self):
        """A record hitting an exclude pattern is not matched by that rule."""
        partner = profile(
            "PayPal",
            partner_type=PARTNER_TYPE_GLOBAL,
            patterns=pattern_rules([{"pattern": "*paypal*", "confidence": 90, "exclude": ["*netflix*"]}]),
        )
        excluded = score_partner(MatchRecord(id="t1", partner="PAYPAL *NETFLIX"), partner)
        plain = score_partner(MatchRecord(id="t2", partner="PAYPAL EUROPE"), partner)
        assert excluded.source != "pattern"
        assert plain.source == "pattern"
        assert plain.confidence == 90

    def test_no_signal(self):
        """Unrelated text returns None."""
        assert score_partner(MatchRecord(id="t1", name="Kaffee Haus"), profile("Amazon")) is None

    def test_malformed_stored_patterns_skipped(self):
        """Garbage entries in stored patterns are ignored."""
        rules = pattern_rules([{"pattern": "", "confidence": 90}, {"pattern": "x*", "confidence": True}, "junk",
                               {"pattern": "ok*", "confidence": 91}])
        assert [r.pattern for r in rules] == ["ok*"]


class TestCompanyNameSimilarity:
    """Normalized company-name similarity."""

    def test_legal_form_ignored(self):
        """Amazon EU S.a.r.l. vs AMAZON EU is identical after normalization."""
        assert company_name_similarity("Amazon EU S.a.r.l.", "AMAZON EU") == 100

    def test_unrelated(self):
        """Different names score low."""
        assert company_name_similarity("Telekom", "Vodafone") < 60


class TestRanking:
    """Ranking and the threshold boundary."""

    def test_threshold_boundary(self):
        """89 applies, 88 suggests."""
        assert should_auto_apply(89) is True
        assert should_auto_apply(88) is False
        assert should_auto_apply(None) is False

    def test_user_beats_global_when_both_assignable(self):
        """User 89 outranks global 95."""
        ranked = rank_matches([
            PartnerMatch("g1", PARTNER_TYPE_GLOBAL, "Global", 95, "pattern"),
            PartnerMatch("p1", PARTNER_TYPE_USER, "User", 89, "name"),
        ])
        assert ranked[0].partner_id == "p1"

    def test_assignable_beats_unassignable(self):
        """Global 95 outranks user 88."""
        ranked = rank_matches([
            PartnerMatch("p1", PARTNER_TYPE_USER, "User", 88, "name"),
            PartnerMatch("g1", PARTNER_TYPE_GLOBAL, "Global", 95, "pattern"),
        ])
        assert ranked[0].partner_id == "g1"

    def test_removed_pair_filtered(self):
        """A manually removed partner is never suggested for that transaction."""
        record = MatchRecord(id="t1", name="AMAZON")
        partner = profile("Amazon", patterns=[PatternRule("amazon*", 95)])
        assert match_record(record, [partner], [], {"p1": {"t1"}}) == []
        assert len(match_record(record, [partner], [], {"p1": {"t2"}})) == 1

    def test_at_most_three(self):
        """Suggestions are capped at three."""
        partners = [profile(f"Vendor {i}", pid=f"p{i}", patterns=[PatternRule("amazon*", 80 + i)]) for i in range(5)]
        matches = match_record(MatchRecord(id="t1", name="AMAZON"), partners, [])
        assert len(matches) == 3
        assert [m.confidence for m in matches] == [84, 83, 82]
