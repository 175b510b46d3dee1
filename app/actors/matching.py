"""
Matching Actors
Dramatiq actors for partner matching on new data and receipt matching chains
"""

from typing import Dict, List, Optional

import dramatiq
import structlog

from app.exceptions import MatchingError

logger = structlog.get_logger(__name__)


def _open_session():
    from app.database import SessionLocal

    if SessionLocal is None:
        raise RuntimeError("Database not configured")
    return SessionLocal()


@dramatiq.actor(
    max_retries=3,
    min_backoff=5000,  # 5 seconds
    max_backoff=60000,  # 1 minute
    queue_name="matching"
)
def match_new_transaction(user_id: str, transaction_id: str) -> Dict:
    """
    Match a freshly synced transaction against all partners.

    Runs match_partners for exactly this id, which also chains category
    matching for it.

    Example:
        >>> match_new_transaction.send("user-1", "tx-1")
    """
    from app.services.partner_matcher import match_partners

    logger.info("match_new_transaction_started", user_id=user_id, transaction_id=transaction_id)
    db = _open_session()
    try:
        return match_partners(db, user_id, transaction_ids=[transaction_id])
    except MatchingError as e:
        db.rollback()
        logger.warning("match_new_transaction_rejected", user_id=user_id, transaction_id=transaction_id, error=str(e))
        return {"error": str(e)}
    except Exception as e:
        db.rollback()
        logger.error("match_new_transaction_failed", user_id=user_id, transaction_id=transaction_id,
                     error=str(e), exc_info=True)
        raise
    finally:
        db.close()


@dramatiq.actor(max_retries=3, min_backoff=5000, max_backoff=60000, queue_name="matching")
def match_new_file(user_id: str, file_id: str) -> Dict:
    """Partner and transaction matching for a receipt whose extraction just completed."""
    from app.models.receipt_file import ReceiptFile
    from app.services.file_partner_matcher import match_file_partner
    from app.services.file_transaction_matcher import match_file_transactions
    from app.services.ownership import get_owned

    db = _open_session()
    try:
        receipt = get_owned(db, ReceiptFile, file_id, user_id, "file")
        if not receipt.extraction_complete:
            logger.info("match_new_file_skipped", file_id=file_id, reason="extraction_incomplete")
            return {"skipped": True}

        partner = match_file_partner(db, receipt)
        transactions = match_file_transactions(db, receipt)
        db.commit()
        return {"partner": partner, "transactions": transactions}
    except MatchingError as e:
        db.rollback()
        logger.warning("match_new_file_rejected", user_id=user_id, file_id=file_id, error=str(e))
        return {"error": str(e)}
    except Exception as e:
        db.rollback()
        logger.error("match_new_file_failed", user_id=user_id, file_id=file_id, error=str(e), exc_info=True)
        raise
    finally:
        db.close()


@dramatiq.actor(max_retries=3, min_backoff=5000, max_backoff=60000, queue_name="matching")
def match_partner_files(user_id: str, partner_id: str) -> Dict:
    """Chained after pattern learning: connect the partner's receiptless transactions."""
    from app.services.file_transaction_matcher import match_files_for_partner

    db = _open_session()
    try:
        result = match_files_for_partner(db, user_id, partner_id)
        logger.info("match_partner_files_completed", user_id=user_id, partner_id=partner_id, **result)
        return result
    except MatchingError as e:
        db.rollback()
        logger.warning("match_partner_files_rejected", user_id=user_id, partner_id=partner_id, error=str(e))
        return {"error": str(e)}
    except Exception as e:
        db.rollback()
        logger.error("match_partner_files_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)
        raise
    finally:
        db.close()


@dramatiq.actor(max_retries=3, min_backoff=5000, max_backoff=60000, queue_name="matching")
def rematch_partner_files(user_id: str, partner_id: str, changed_fields: Optional[List[str]] = None) -> Dict:
    """Re-match unassigned receipts after a partner's matching keys changed."""
    from app.services.partner_assignment import on_partner_updated

    db = _open_session()
    try:
        return on_partner_updated(db, user_id, partner_id, changed_fields or [])
    except Exception as e:
        db.rollback()
        logger.error("rematch_partner_files_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)
        raise
    finally:
        db.close()
