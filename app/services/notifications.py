"""
Notification Writer

Persists user-facing notifications for matching and learning runs.
Follows the caller-controls-transaction pattern: adds to the session,
never commits.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from app.models.notification import Notification

logger = structlog.get_logger(__name__)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def create_notification(
    db: Session,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    context: Optional[Dict[str, Any]] = None
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        context=context or {},
    )
    db.add(notification)
    logger.info("notification_created", user_id=user_id, type=notification_type)
    return notification


def notify_partner_matching(db: Session, user_id: str, auto_matched: int, with_suggestions: int) -> Optional[Notification]:
    """Summary of a match_partners run; nothing is written for an empty run."""
    if auto_matched == 0 and with_suggestions == 0:
        return None

    if auto_matched > 0:
        title = f"Matched {_plural(auto_matched, 'transaction')} automatically"
        message = f"Automatically matched {_plural(auto_matched, 'transaction')} to known partners."
        if with_suggestions > 0:
            message += f" {with_suggestions} more need your review."
    else:
        title = f"Found suggestions for {_plural(with_suggestions, 'transaction')}"
        message = f"Partner suggestions found for {_plural(with_suggestions, 'transaction')}. Please review and confirm."

    return create_notification(
        db, user_id, "partner_matching", title, message,
        {"auto_matched_count": auto_matched, "suggestions_count": with_suggestions},
    )


def notify_pattern_learned(
    db: Session,
    user_id: str,
    partner_id: str,
    partner_name: str,
    patterns: List[str],
    matched_count: int,
    preview: List[Dict[str, Any]]
) -> Notification:
    title = f"Learned {_plural(len(patterns), 'pattern')} for {partner_name}"
    message = f"Learned matching rules for {partner_name}"
    if matched_count > 0:
        message += f" and assigned {_plural(matched_count, 'transaction')}."
    else:
        message += "."
    return create_notification(
        db, user_id, "pattern_learned", title, message,
        {
            "partner_id": partner_id,
            "partner_name": partner_name,
            "patterns": patterns,
            "matched_count": matched_count,
            "transactions": preview,
        },
    )


def notify_patterns_cleared(db: Session, user_id: str, partner_id: str, partner_name: str, unassigned_count: int) -> Notification:
    return create_notification(
        db, user_id, "patterns_cleared",
        f"Cleared matching rules for {partner_name}",
        f"No confirmed transactions are left for {partner_name}; "
        f"{_plural(unassigned_count, 'automatic assignment')} removed.",
        {"partner_id": partner_id, "partner_name": partner_name, "unassigned_count": unassigned_count},
    )
