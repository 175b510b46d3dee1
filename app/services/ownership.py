"""
Ownership checks for caller-supplied ids.

Raised errors are caller-visible and happen before any side effect.
"""

from typing import Any, Optional, Type

from sqlalchemy.orm import Session

from app.exceptions import InputValidationError, NotFoundError, PermissionDeniedError


def require_id(value: Optional[str], field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field_name} is required")
    return value.strip()


def get_owned(db: Session, model: Type[Any], entity_id: str, user_id: str, entity: str) -> Any:
    """
    Load a row by primary key and check it belongs to user_id.

    Raises:
        NotFoundError: No row with that id
        PermissionDeniedError: Row belongs to another user
    """
    row = db.get(model, entity_id)
    if row is None:
        raise NotFoundError(entity, entity_id)
    if row.user_id != user_id:
        raise PermissionDeniedError(entity, entity_id)
    return row
