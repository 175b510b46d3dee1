"""
Tests for the Dramatiq actors and the scheduled learning sweep
"""

from unittest.mock import patch

import pytest

from app.actors.matching import match_new_file, match_new_transaction, rematch_partner_files
from app.models import MatchedBy
from app.scheduler import run_learning_sweep, start_scheduler, stop_scheduler

from tests.conftest import OTHER_USER_ID, USER_ID


@pytest.fixture
def actor_session(session_factory):
    with patch("app.actors.matching._open_session", side_effect=lambda: session_factory()):
        yield


class TestMatchingActors:
    """Actor bodies run synchronously via .fn"""

    def test_new_transaction_matched(self, db, actor_session, make_partner, make_transaction):
        partner = make_partner("Amazon", learned_patterns=[{"pattern": "amazon*", "confidence": 95}])
        transaction = make_transaction(name="AMAZON")

        result = match_new_transaction.fn(USER_ID, transaction.id)

        db.refresh(transaction)
        assert result["auto_matched"] == 1
        assert transaction.partner_id == partner.id
        assert transaction.partner_matched_by == MatchedBy.AUTO

    def test_new_file_skips_incomplete_extraction(self, actor_session, make_file):
        receipt = make_file(extraction_complete=False)
        assert match_new_file.fn(USER_ID, receipt.id) == {"skipped": True}

    def test_foreign_file_rejected_without_retry(self, actor_session, make_file):
        receipt = make_file(user_id=OTHER_USER_ID)
        assert "error" in match_new_file.fn(USER_ID, receipt.id)

    def test_unexpected_error_propagates(self, actor_session):
        with patch("app.services.partner_assignment.on_partner_updated", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                rematch_partner_files.fn(USER_ID, "p1", ["vat_id"])

    def test_no_database(self):
        with pytest.raises(RuntimeError):
            match_new_transaction.fn(USER_ID, "t1")


class TestScheduler:
    """APScheduler wiring."""

    def test_skipped_in_testing(self):
        scheduler = start_scheduler("testing")
        assert scheduler.running is False
        assert scheduler.get_jobs() == []
        stop_scheduler(scheduler)

    def test_sweep_without_database_is_noop(self):
        with patch("app.services.learning_queue.process_due_queues") as sweep:
            run_learning_sweep()
        sweep.assert_not_called()

    def test_sweep_never_raises(self, session_factory):
        with patch("app.database.SessionLocal", session_factory), \
                patch("app.services.learning_queue.process_due_queues", side_effect=RuntimeError("boom")) as sweep:
            run_learning_sweep()
        sweep.assert_called_once()
