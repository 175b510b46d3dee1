"""
Tests for receipt <-> transaction scoring
"""

from datetime import datetime
from types import SimpleNamespace

from app.services.transaction_scoring import (
    FileMatchingData,
    amount_score,
    date_score,
    names_match,
    score_transaction,
)


def tx(**overrides):
    values = dict(
        id="t1",
        amount=-1999,
        currency="EUR",
        date=datetime(2026, 3, 15, 12, 0),
        name=None,
        partner=None,
        partner_iban=None,
        reference=None,
        partner_id=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestAmountScore:
    """Amount component."""

    def test_exact_ignores_sign(self):
        assert amount_score(1999, -1999) == (40, "amount_exact")

    def test_bands(self):
        """1%, 5% and 10% tolerance bands."""
        assert amount_score(10000, 10090)[0] == 38
        assert amount_score(10000, 10400)[0] == 30
        assert amount_score(10000, 10900)[0] == 20
        assert amount_score(10000, 12000) == (0, None)

    def test_currency_mismatch_halves(self):
        assert amount_score(1999, 1999, "USD", "EUR")[0] == 20

    def test_zero_amount(self):
        assert amount_score(0, 1999) == (0, None)


class TestDateScore:
    """Date component."""

    def test_bands(self):
        base = datetime(2026, 3, 15)
        assert date_score(base, datetime(2026, 3, 15, 23))[0] == 25
        assert date_score(base, datetime(2026, 3, 18))[0] == 22
        assert date_score(base, datetime(2026, 3, 22))[0] == 15
        assert date_score(base, datetime(2026, 3, 29))[0] == 8
        assert date_score(base, datetime(2026, 4, 14))[0] == 3
        assert date_score(base, datetime(2026, 5, 1)) == (0, None)


class TestNamesMatch:
    """Partner text comparison."""

    def test_exact_after_legal_form(self):
        assert names_match("Amazon GmbH", "AMAZON") == 25

    def test_containment(self):
        assert names_match("Amazon", "AMAZON MKTP DE") == 18

    def test_unrelated(self):
        assert names_match("Telekom", "Vodafone") == 0


class TestScoreTransaction:
    """Weighted sum."""

    def test_amount_and_date(self):
        """Exact amount and same day give 65."""
        data = FileMatchingData(extracted_amount=1999, extracted_date=datetime(2026, 3, 15))
        score = score_transaction(data, tx())
        assert score.confidence == 65
        assert score.match_sources == ["amount_exact", "date_exact"]

    def test_partner_boosts_date_and_caps(self):
        """Same partner id on both sides boosts the date; total capped at 100."""
        data = FileMatchingData(extracted_amount=1999, extracted_date=datetime(2026, 3, 15), partner_id="p1")
        score = score_transaction(data, tx(partner_id="p1"))
        assert score.breakdown["date"] == 37
        assert score.breakdown["partner"] == 25
        assert score.confidence == 100

    def test_far_date_discounts_partner(self):
        """A partner hit three weeks away is worth less."""
        data = FileMatchingData(extracted_date=datetime(2026, 3, 15), partner_id="p1")
        score = score_transaction(data, tx(partner_id="p1", date=datetime(2026, 4, 5)))
        assert score.breakdown["date"] == 3
        assert score.breakdown["partner"] == 15

    def test_iban_and_reference(self):
        """IBAN adds 10, a reference found in the receipt adds 5 plus a date bonus."""
        data = FileMatchingData(
            extracted_iban="DE89 3704 0044 0532 0130 00",
            extracted_text="Rechnung RE-2026-0042 vom 15.03.",
        )
        score = score_transaction(data, tx(partner_iban="DE89370400440532013000", reference="RE-2026-0042"))
        assert score.breakdown["iban"] == 10
        assert score.breakdown["reference"] == 5
        assert score.breakdown["date"] == 10
        assert "iban" in score.match_sources and "reference" in score.match_sources

    def test_precision_hint(self):
        """A targeted search hint counts only for its own transaction."""
        data = FileMatchingData(precision_hint={"transaction_id": "t1", "match_confidence": 60})
        assert score_transaction(data, tx()).breakdown["hint"] == 40
        assert score_transaction(data, tx(id="t2")).breakdown["hint"] == 0

    def test_preview(self):
        score = score_transaction(FileMatchingData(), tx(name="AMAZON"))
        assert score.preview["name"] == "AMAZON"
        assert score.preview["amount"] == -1999
