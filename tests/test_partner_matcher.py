"""
Tests for match_partners against an in-memory database
"""

import pytest

from app.exceptions import InputValidationError
from app.models import MatchedBy, Notification
from app.services.partner_matcher import load_partner_candidates, match_partners

from tests.conftest import OTHER_USER_ID, USER_ID


class TestMatchPartners:
    """Default, explicit-id and match_all modes."""

    def test_learned_pattern_auto_assigns(self, db, make_partner, make_transaction):
        """amazon* at 95 assigns with confidence 95 and matched_by auto."""
        partner = make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        tx = make_transaction(name="AMAZON")

        result = match_partners(db, USER_ID, chain_categories=False)

        db.refresh(tx)
        assert result == {"processed": 1, "auto_matched": 1, "with_suggestions": 0}
        assert tx.partner_id == partner.id
        assert tx.partner_type == "user"
        assert tx.partner_match_confidence == 95
        assert tx.partner_matched_by == MatchedBy.AUTO
        assert tx.partner_suggestions[0]["source"] == "pattern"

    def test_below_threshold_only_suggests(self, db, make_partner, make_transaction):
        """A name containment match is written as a suggestion only."""
        make_partner("Amazon")
        tx = make_transaction(partner="AMAZON EU SARL")

        result = match_partners(db, USER_ID, chain_categories=False)

        db.refresh(tx)
        assert result["with_suggestions"] == 1
        assert tx.partner_id is None
        assert len(tx.partner_suggestions) == 1

    def test_user_confirmed_not_overwritten(self, db, make_partner, make_transaction):
        """match_all recomputes suggestions but keeps a manual assignment."""
        chosen = make_partner("Hausbank")
        make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 99}])
        tx = make_transaction(
            name="AMAZON",
            partner_id=chosen.id,
            partner_type="user",
            partner_matched_by=MatchedBy.MANUAL,
        )

        match_partners(db, USER_ID, match_all=True, chain_categories=False)

        db.refresh(tx)
        assert tx.partner_id == chosen.id
        assert tx.partner_matched_by == MatchedBy.MANUAL
        assert tx.partner_suggestions

    def test_removed_pair_not_reassigned(self, db, make_partner, make_transaction):
        """A manual removal keeps the partner out of suggestions for that transaction."""
        tx = make_transaction(name="AMAZON")
        make_partner(
            "Amazon",
            learned_patterns=[{"pattern": "amazon*", "confidence": 95}],
            manual_removals=[{"transaction_id": tx.id, "name": "AMAZON", "partner": None}],
        )

        match_partners(db, USER_ID, transaction_ids=[tx.id], chain_categories=False)

        db.refresh(tx)
        assert tx.partner_id is None
        assert tx.partner_suggestions == []

    def test_foreign_transaction_ids_skipped(self, db, make_partner, make_transaction):
        """Another user's transaction is never touched."""
        make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        foreign = make_transaction(name="AMAZON", user_id=OTHER_USER_ID)

        result = match_partners(db, USER_ID, transaction_ids=[foreign.id], chain_categories=False)

        db.refresh(foreign)
        assert result["processed"] == 0
        assert foreign.partner_id is None

    def test_empty_id_list_matches_nothing(self, db, make_partner, make_transaction):
        make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        tx = make_transaction(name="AMAZON")

        result = match_partners(db, USER_ID, transaction_ids=[], chain_categories=False)

        db.refresh(tx)
        assert result == {"processed": 0, "auto_matched": 0, "with_suggestions": 0}
        assert tx.partner_id is None

    def test_invalid_transaction_ids(self, db):
        """Non-string ids are rejected before any work."""
        with pytest.raises(InputValidationError):
            match_partners(db, USER_ID, transaction_ids=["ok", 3])

    def test_user_partner_wins_over_global(self, db, make_partner, make_global_partner, make_transaction):
        """A user partner at 89 beats a global partner at 95."""
        user_partner = make_partner("Vendor", learned_patterns=[{"pattern": "*paypal*", "confidence": 89}])
        make_global_partner("PayPal", patterns=[{"pattern": "*paypal*", "confidence": 95}])
        tx = make_transaction(partner="PAYPAL EUROPE")

        match_partners(db, USER_ID, chain_categories=False)

        db.refresh(tx)
        assert tx.partner_id == user_partner.id
        assert tx.partner_type == "user"
        assert len(tx.partner_suggestions) == 2

    def test_notification_written(self, db, make_partner, make_transaction):
        """A run with results leaves one partner_matching notification."""
        make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        make_transaction(name="AMAZON")
        make_transaction(name="AMAZON MKTP")

        match_partners(db, USER_ID, chain_categories=False)

        notifications = db.query(Notification).filter(Notification.user_id == USER_ID).all()
        assert len(notifications) == 1
        assert notifications[0].type == "partner_matching"
        assert notifications[0].context["auto_matched_count"] == 2

    def test_empty_run_no_notification(self, db, make_transaction):
        """Nothing matched, nothing notified."""
        make_transaction(name="KAFFEE")
        result = match_partners(db, USER_ID, chain_categories=False)
        assert result["processed"] == 1
        assert db.query(Notification).count() == 0

    def test_rerun_is_stable(self, db, make_partner, make_transaction):
        """Running twice gives the same assignment and suggestions."""
        make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        tx = make_transaction(name="AMAZON")

        match_partners(db, USER_ID, transaction_ids=[tx.id], chain_categories=False)
        db.refresh(tx)
        first = (tx.partner_id, list(tx.partner_suggestions))
        match_partners(db, USER_ID, transaction_ids=[tx.id], chain_categories=False)
        db.refresh(tx)
        assert (tx.partner_id, list(tx.partner_suggestions)) == first


class TestLoadPartnerCandidates:
    """Candidate loading."""

    def test_localized_global_skipped(self, db, make_partner, make_global_partner):
        """Once localized, the global template is no longer a candidate."""
        global_partner = make_global_partner("PayPal")
        make_global_partner("Stripe")
        make_partner("PayPal", global_partner_id=global_partner.id)

        candidates = load_partner_candidates(db, USER_ID)

        assert [p.name for p in candidates.global_partners] == ["Stripe"]
        assert [p.name for p in candidates.user_partners] == ["PayPal"]

    def test_inactive_and_foreign_skipped(self, db, make_partner):
        make_partner("Old", is_active=False)
        make_partner("Theirs", user_id=OTHER_USER_ID)
        assert load_partner_candidates(db, USER_ID).user_partners == []
