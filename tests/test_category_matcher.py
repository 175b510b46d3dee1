"""
Tests for no-receipt category matching
"""

from types import SimpleNamespace

from app.models import MatchedBy
from app.services.category_matcher import (
    match_categories,
    match_transaction_to_categories,
    score_category,
    usage_boost,
)

from tests.conftest import USER_ID


def category(template_id="bank-fees", partners=(), patterns=(), count=0, cid="c1"):
    return SimpleNamespace(
        id=cid,
        template_id=template_id,
        matched_partner_ids=list(partners),
        learned_patterns=list(patterns),
        transaction_count=count,
        is_active=True,
    )


def tx(name=None, partner_id=None, tid="t1"):
    return SimpleNamespace(id=tid, name=name, partner=None, reference=None, partner_id=partner_id)


FEE_PATTERN = {"pattern": "*kontofuehrung*", "confidence": 80}


class TestScoreCategory:
    """Partner linkage, patterns and boosts."""

    def test_partner_only(self):
        suggestion = score_category(tx(partner_id="bank"), category(partners=["bank"]))
        assert (suggestion.confidence, suggestion.source) == (89, "partner")

    def test_pattern_only(self):
        suggestion = score_category(tx("ENTGELT KONTOFUEHRUNG"), category(patterns=[FEE_PATTERN]))
        assert (suggestion.confidence, suggestion.source) == (80, "pattern")

    def test_partner_and_pattern(self):
        suggestion = score_category(
            tx("ENTGELT KONTOFÜHRUNG", partner_id="bank"),
            category(partners=["bank"], patterns=[FEE_PATTERN]),
        )
        assert (suggestion.confidence, suggestion.source) == (95, "partner+pattern")

    def test_no_file_evidence_boost(self):
        suggestion = score_category(tx(partner_id="bank"), category(partners=["bank"]), {"bank"})
        assert suggestion.confidence == 97

    def test_usage_boost(self):
        assert usage_boost(0) == 0
        assert usage_boost(9) == 5
        assert usage_boost(100000) == 10
        suggestion = score_category(tx("KONTOFUEHRUNG"), category(patterns=[FEE_PATTERN], count=9))
        assert suggestion.confidence == 85

    def test_below_suggestion_line(self):
        weak = category(patterns=[{"pattern": "*gebuehr*", "confidence": 55}])
        assert score_category(tx("GEBUEHR"), weak) is None


class TestMatchTransactionToCategories:
    """Ranking across categories."""

    def test_receipt_lost_never_suggested(self):
        lost = category("receipt-lost", partners=["bank"], cid="c2")
        fees = category(partners=["bank"])
        suggestions = match_transaction_to_categories(tx(partner_id="bank"), [lost, fees])
        assert [s.template_id for s in suggestions] == ["bank-fees"]

    def test_removed_pair_skipped(self):
        fees = category(partners=["bank"])
        assert match_transaction_to_categories(tx(partner_id="bank"), [fees], {"c1": {"t1"}}) == []


class TestMatchCategories:
    """Database run."""

    def test_auto_applies_and_counts(self, db, make_category, make_transaction, make_partner):
        bank = make_partner("Sparkasse")
        fees = make_category("bank-fees", matched_partner_ids=[bank.id])
        transaction = make_transaction(name="ENTGELT", partner_id=bank.id, partner_type="user",
                                       partner_matched_by=MatchedBy.MANUAL)

        result = match_categories(db, USER_ID)

        db.refresh(transaction)
        db.refresh(fees)
        assert result == {"processed": 1, "auto_matched": 1, "with_suggestions": 0}
        assert transaction.no_receipt_category_id == fees.id
        assert transaction.category_matched_by == MatchedBy.AUTO
        assert transaction.category_match_confidence == 97
        assert fees.transaction_count == 1

    def test_transactions_with_receipts_ineligible(self, db, make_category, make_transaction):
        make_category("bank-fees", learned_patterns=[{"pattern": "entgelt*", "confidence": 95}])
        transaction = make_transaction(name="ENTGELT", file_ids=["f1"])

        result = match_categories(db, USER_ID, transaction_ids=[transaction.id])

        assert result["processed"] == 0

    def test_no_categories(self, db, make_transaction):
        make_transaction(name="ENTGELT")
        assert match_categories(db, USER_ID)["processed"] == 0

    def test_empty_id_list_matches_nothing(self, db, make_category, make_transaction):
        make_category("bank-fees", learned_patterns=[{"pattern": "entgelt*", "confidence": 95}])
        transaction = make_transaction(name="ENTGELT")

        result = match_categories(db, USER_ID, transaction_ids=[])

        db.refresh(transaction)
        assert result["processed"] == 0
        assert transaction.no_receipt_category_id is None
