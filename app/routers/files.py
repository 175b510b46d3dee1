"""
Receipt Matching API Router
Transaction candidates for a receipt and receipt partner matching
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.dependencies import get_user_id, require_db, to_http_error
from app.exceptions import MatchingError
from app.models.receipt_file import ReceiptFile
from app.services.file_partner_matcher import match_file_partner
from app.services.file_transaction_matcher import find_transaction_matches_for_file, match_file_transactions
from app.services.ownership import get_owned

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/files", tags=["files"])


class TransactionMatchesRequest(BaseModel):
    file_id: Optional[str] = None
    file_info: Optional[Dict[str, Any]] = None
    exclude_transaction_ids: List[str] = Field(default_factory=list)
    search_query: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1, le=50)


@router.post("/transaction-matches")
def transaction_matches_endpoint(
    request: TransactionMatchesRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """
    Ranked transactions a receipt could belong to.

    Pass file_id for a stored receipt or file_info for data not yet stored.
    Read-only.
    """
    try:
        return find_transaction_matches_for_file(
            db, user_id,
            file_id=request.file_id,
            file_info=request.file_info,
            exclude_transaction_ids=request.exclude_transaction_ids,
            search_query=request.search_query,
            limit=request.limit,
        )
    except MatchingError as e:
        raise to_http_error(e)


@router.post("/{file_id}/match")
def match_file_endpoint(
    file_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Re-run partner and transaction matching for one receipt."""
    try:
        receipt = get_owned(db, ReceiptFile, file_id, user_id, "file")
    except MatchingError as e:
        raise to_http_error(e)

    partner = match_file_partner(db, receipt)
    transactions = match_file_transactions(db, receipt)
    db.commit()
    return {
        "partner": partner,
        "transactions": transactions,
        "partner_suggestions": receipt.partner_suggestions,
        "transaction_suggestions": receipt.transaction_suggestions,
    }


@router.post("/{file_id}/extracted", status_code=202)
def file_extracted_endpoint(
    file_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Called by the extraction pipeline; queues matching for the receipt on the worker."""
    try:
        get_owned(db, ReceiptFile, file_id, user_id, "file")
    except MatchingError as e:
        raise to_http_error(e)

    try:
        from app.actors.matching import match_new_file
        match_new_file.send(user_id, file_id)
    except Exception as e:
        logger.error("file_match_enqueue_failed", file_id=file_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to enqueue matching: {str(e)}")

    logger.info("file_matching_queued", user_id=user_id, file_id=file_id)
    return {"file_id": file_id, "queued": True}
