"""
Cascade Consistency

Whenever a partner's pattern set changes (learned, cleared, edited) every
automatic assignment to that partner is re-checked against the new set.
Assignments that no longer match a pattern at the auto-apply threshold are
cleared. Manual and suggestion-confirmed assignments are never touched.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models.transaction import MatchedBy, Transaction
from app.services.matching import glob
from app.services.matching.records import PatternRule, pattern_rules
from app.services.pagination import iter_transaction_pages
from app.services.partner_matcher import should_auto_apply

logger = structlog.get_logger(__name__)


def still_matches(transaction: Any, rules: List[PatternRule]) -> bool:
    """True when any rule at or above the auto-apply threshold matches."""
    return any(
        should_auto_apply(rule.confidence)
        and glob.match_flexible(rule.pattern, transaction.name, transaction.partner, transaction.reference)
        for rule in rules
    )


def cascade_unassign(
    db: Session,
    user_id: str,
    partner_id: str,
    patterns: Optional[List[Dict[str, Any]]] = None,
) -> int:
    """
    Clear automatic assignments to partner_id that the new patterns no
    longer justify. An empty pattern list clears all of them.

    Covers matched_by "auto" and legacy rows without matched_by. Commits
    once per page of store_batch_size rows.

    Returns:
        Number of transactions unassigned
    """
    rules = pattern_rules(patterns)
    query = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_id == partner_id,
        or_(
            Transaction.partner_matched_by == MatchedBy.AUTO,
            Transaction.partner_matched_by.is_(None),
        ),
    )

    checked = 0
    unassigned = 0
    for page in iter_transaction_pages(query, settings.store_batch_size):
        for transaction in page:
            checked += 1
            if rules and still_matches(transaction, rules):
                continue
            transaction.clear_partner()
            unassigned += 1
        db.commit()

    logger.info(
        "cascade_unassign_completed",
        user_id=user_id,
        partner_id=partner_id,
        patterns=len(rules),
        checked=checked,
        unassigned=unassigned,
    )
    return unassigned
