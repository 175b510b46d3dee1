"""
Shared FastAPI dependencies
Caller identity, database availability and error mapping
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import MatchingError


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authenticated caller, set by the gateway in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def require_db(db: Optional[Session] = Depends(get_db)) -> Session:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def to_http_error(error: MatchingError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))
