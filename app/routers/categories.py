"""
No-Receipt Category API Router
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.dependencies import get_user_id, require_db, to_http_error
from app.exceptions import MatchingError
from app.services.category_matcher import match_categories

router = APIRouter(prefix="/api/v1/categories", tags=["categories"])


class MatchCategoriesRequest(BaseModel):
    transaction_ids: Optional[List[str]] = None
    match_all: bool = False


@router.post("/match")
def match_categories_endpoint(
    request: MatchCategoriesRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """
    Suggest or auto-apply no-receipt categories.

    Only transactions without a category and without receipts are eligible.
    """
    try:
        return match_categories(db, user_id, transaction_ids=request.transaction_ids, match_all=request.match_all)
    except MatchingError as e:
        raise to_http_error(e)
