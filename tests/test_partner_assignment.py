"""
Tests for user assignment actions and their hooks
"""

from unittest.mock import patch

import pytest

from app.exceptions import AssignmentBlockedError, InputValidationError, NotFoundError
from app.models import MatchedBy, Partner
from app.services.learning_queue import load_queue
from app.services.partner_assignment import (
    assign_partner_to_transaction,
    localize_global_partner,
    on_partner_updated,
    remove_partner_from_transaction,
    update_partner,
)

from tests.conftest import USER_ID


class TestAssign:
    """assign_partner_to_transaction."""

    def test_manual_assign_queues_learning(self, db, make_partner, make_transaction):
        partner = make_partner("Amazon")
        transaction = make_transaction(name="AMAZON")

        result = assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "user", MatchedBy.MANUAL)

        db.refresh(transaction)
        assert result == {"success": True, "learning_queued": True}
        assert transaction.partner_id == partner.id
        assert transaction.partner_matched_by == MatchedBy.MANUAL
        assert load_queue(db, USER_ID).pending_partner_ids == [partner.id]

    def test_auto_onto_removed_pair_blocked(self, db, make_partner, make_transaction):
        transaction = make_transaction(name="AMAZON")
        partner = make_partner("Amazon", manual_removals=[{"transaction_id": transaction.id, "name": "AMAZON"}])

        with pytest.raises(AssignmentBlockedError) as exc:
            assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "user", MatchedBy.AUTO)

        db.refresh(transaction)
        assert exc.value.status_code == 409
        assert transaction.partner_id is None

    def test_manual_lifts_removal(self, db, make_partner, make_transaction):
        transaction = make_transaction(name="AMAZON")
        partner = make_partner("Amazon", manual_removals=[{"transaction_id": transaction.id, "name": "AMAZON"}])

        assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "user", MatchedBy.MANUAL)

        db.refresh(partner)
        assert partner.manual_removals == []

    def test_global_partner_not_learned(self, db, make_global_partner, make_transaction):
        template = make_global_partner("PayPal")
        transaction = make_transaction(name="PAYPAL")

        result = assign_partner_to_transaction(db, USER_ID, transaction.id, template.id, "global", MatchedBy.SUGGESTION)

        assert result["learning_queued"] is False
        assert load_queue(db, USER_ID) is None

    def test_auto_assignment_not_learned(self, db, make_partner, make_transaction):
        partner = make_partner("Amazon")
        transaction = make_transaction(name="AMAZON")
        result = assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "user", MatchedBy.AUTO, 95)
        assert result["learning_queued"] is False

    def test_validation(self, db, make_partner, make_transaction):
        partner = make_partner("Amazon")
        transaction = make_transaction()
        with pytest.raises(InputValidationError):
            assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "user", "guess")
        with pytest.raises(InputValidationError):
            assign_partner_to_transaction(db, USER_ID, transaction.id, partner.id, "shared", MatchedBy.MANUAL)
        with pytest.raises(NotFoundError):
            assign_partner_to_transaction(db, USER_ID, "missing", partner.id, "user", MatchedBy.MANUAL)


class TestRemove:
    """remove_partner_from_transaction."""

    def test_records_negative_evidence(self, db, make_partner, make_transaction):
        partner = make_partner("Amazon")
        transaction = make_transaction(name="AMAZON WEB SERVICES", partner="AWS EMEA", partner_id=partner.id,
                                       partner_type="user", partner_matched_by=MatchedBy.AUTO)

        result = remove_partner_from_transaction(db, USER_ID, transaction.id)

        db.refresh(partner)
        db.refresh(transaction)
        assert result == {"success": True, "learning_queued": True}
        assert transaction.partner_id is None
        removal = partner.manual_removals[0]
        assert removal["transaction_id"] == transaction.id
        assert removal["name"] == "AMAZON WEB SERVICES"
        assert removal["partner"] == "AWS EMEA"
        assert "removed_at" in removal

    def test_nothing_assigned(self, db, make_transaction):
        transaction = make_transaction()
        assert remove_partner_from_transaction(db, USER_ID, transaction.id) == {
            "success": True, "learning_queued": False
        }


class TestLocalize:
    """localize_global_partner."""

    def test_copies_and_moves_references(self, db, make_global_partner, make_transaction):
        template = make_global_partner("PayPal", aliases=["PP"], website="paypal.com")
        suggestion = {"partner_id": template.id, "partner_type": "global", "confidence": 86, "source": "name"}
        assigned = make_transaction(name="PAYPAL", partner_id=template.id, partner_type="global",
                                    partner_matched_by=MatchedBy.AUTO, partner_suggestions=[suggestion])
        suggested = make_transaction(name="PAYPAL EUROPE", partner_suggestions=[suggestion])

        result = localize_global_partner(db, USER_ID, template.id)

        local = db.get(Partner, result["partner_id"])
        db.refresh(assigned)
        db.refresh(suggested)
        assert result["created"] is True
        assert result["transactions_updated"] == 1
        assert result["suggestions_updated"] == 2
        assert local.global_partner_id == template.id
        assert local.aliases == ["PP"]
        assert (assigned.partner_id, assigned.partner_type) == (local.id, "user")
        assert suggested.partner_suggestions[0]["partner_id"] == local.id
        assert suggested.partner_suggestions[0]["partner_type"] == "user"

    def test_reuses_existing_copy(self, db, make_global_partner):
        template = make_global_partner("PayPal")
        first = localize_global_partner(db, USER_ID, template.id)
        second = localize_global_partner(db, USER_ID, template.id)
        assert second["created"] is False
        assert second["partner_id"] == first["partner_id"]

    def test_unknown_template(self, db):
        with pytest.raises(NotFoundError):
            localize_global_partner(db, USER_ID, "missing")


class TestUpdatePartner:
    """update_partner and its receipt re-match hook."""

    def test_matching_field_queues_rematch(self, db, make_partner):
        from app.actors.matching import rematch_partner_files

        partner = make_partner("Amazon")
        with patch.object(rematch_partner_files, "send") as send:
            result = update_partner(db, USER_ID, partner.id, {"vat_id": "LU26375245", "aliases": ["AMZN"]})

        assert result["rematch_queued"] is True
        assert sorted(result["changed_fields"]) == ["aliases", "vat_id"]
        send.assert_called_once()

    def test_non_matching_field(self, db, make_partner):
        partner = make_partner("Amazon")
        result = update_partner(db, USER_ID, partner.id, {"is_active": False})
        assert result == {"partner_id": partner.id, "changed_fields": ["is_active"], "rematch_queued": False}

    def test_unchanged_value_is_no_change(self, db, make_partner):
        partner = make_partner("Amazon")
        assert update_partner(db, USER_ID, partner.id, {"name": "Amazon"})["changed_fields"] == []

    def test_rejects_unknown_and_empty_name(self, db, make_partner):
        partner = make_partner("Amazon")
        with pytest.raises(InputValidationError):
            update_partner(db, USER_ID, partner.id, {"learned_patterns": []})
        with pytest.raises(InputValidationError):
            update_partner(db, USER_ID, partner.id, {"name": "  "})

    def test_rejects_wrongly_typed_values(self, db, make_partner):
        partner = make_partner("Amazon")
        for changes in ({"is_active": "no"}, {"is_active": None}, {"aliases": "AMZN"}, {"vat_id": 42}):
            with pytest.raises(InputValidationError):
                update_partner(db, USER_ID, partner.id, changes)
        db.refresh(partner)
        assert partner.is_active is True

    def test_on_partner_updated_rematches_files(self, db, make_partner, make_file):
        partner = make_partner("Amazon", vat_id="LU26375245")
        receipt = make_file(extracted_vat_id="LU26375245")

        result = on_partner_updated(db, USER_ID, partner.id, ["vat_id"])

        db.refresh(receipt)
        assert result["rematched"] is True
        assert receipt.partner_id == partner.id
        assert on_partner_updated(db, USER_ID, partner.id, ["is_active"]) == {"rematched": False}
