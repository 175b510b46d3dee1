"""
Transaction Ingestion API Router
Called by the banking sync once a transaction is stored; matching runs on the worker
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.dependencies import get_user_id, require_db, to_http_error
from app.exceptions import MatchingError
from app.models.transaction import Transaction
from app.services.ownership import get_owned

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


@router.post("/{transaction_id}/synced", status_code=202)
def transaction_synced_endpoint(
    transaction_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Queue partner (and chained category) matching for a new transaction."""
    try:
        get_owned(db, Transaction, transaction_id, user_id, "transaction")
    except MatchingError as e:
        raise to_http_error(e)

    try:
        from app.actors.matching import match_new_transaction
        match_new_transaction.send(user_id, transaction_id)
    except Exception as e:
        logger.error("match_enqueue_failed", transaction_id=transaction_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to enqueue matching: {str(e)}")

    logger.info("transaction_matching_queued", user_id=user_id, transaction_id=transaction_id)
    return {"transaction_id": transaction_id, "queued": True}
