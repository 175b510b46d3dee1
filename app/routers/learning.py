"""
Pattern Learning Queue API Router
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.dependencies import get_user_id, require_db
from app.services.learning_queue import get_queue_status, trigger_learning_now

router = APIRouter(prefix="/api/v1/learning", tags=["learning"])


@router.get("/queue")
async def queue_status_endpoint(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    return get_queue_status(db, user_id)


@router.post("/trigger")
def trigger_learning_endpoint(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Process the caller's pending partners now instead of after the debounce."""
    return trigger_learning_now(db, user_id)
