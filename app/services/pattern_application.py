"""
Bulk Pattern Application

Applies every user partner's learned patterns to the user's unassigned
transactions, newest first, in keyset pages. Each page is committed before
the next is read, so a run cut short keeps its progress.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from app.config import settings
from app.models.partner import Partner
from app.models.transaction import MatchedBy, Transaction
from app.services.matching import glob
from app.services.matching.records import PARTNER_TYPE_USER, PatternRule, pattern_rules
from app.services.pagination import iter_transaction_pages
from app.services.partner_matcher import should_auto_apply

logger = structlog.get_logger(__name__)


@dataclass
class PatternOwner:
    partner_id: str
    name: str
    rules: List[PatternRule]
    removed_ids: Set[str] = field(default_factory=set)


@dataclass
class PatternHit:
    partner_id: str
    confidence: float
    pattern: str


def _matches(rule: PatternRule, transaction: Any, text: str, flexible: bool) -> bool:
    if flexible:
        return glob.match_flexible(rule.pattern, transaction.name, transaction.partner, transaction.reference)
    return glob.match(rule.pattern, text)


def best_pattern_hit(transaction: Any, owners: List[PatternOwner], flexible: bool = False) -> Optional[PatternHit]:
    """
    Highest-confidence pattern matching "name partner reference", or with
    flexible=True any field permutation.
    """
    text = " ".join(v for v in (transaction.name, transaction.partner, transaction.reference) if v)
    if not text:
        return None

    best = None
    for owner in owners:
        if transaction.id in owner.removed_ids:
            continue
        for rule in owner.rules:
            if _matches(rule, transaction, text, flexible) and (best is None or rule.confidence > best.confidence):
                best = PatternHit(owner.partner_id, rule.confidence, rule.pattern)
    return best


def assign_by_pattern(transaction: Transaction, hit: PatternHit) -> None:
    transaction.partner_id = hit.partner_id
    transaction.partner_type = PARTNER_TYPE_USER
    transaction.partner_match_confidence = hit.confidence
    transaction.partner_matched_by = MatchedBy.AUTO
    transaction.partner_suggestions = [{
        "partner_id": hit.partner_id,
        "partner_type": PARTNER_TYPE_USER,
        "confidence": hit.confidence,
        "source": "pattern",
    }]


def load_pattern_owners(db: Session, user_id: str) -> List[PatternOwner]:
    partners = db.query(Partner).filter(
        Partner.user_id == user_id,
        Partner.is_active.is_(True),
    ).all()
    owners = []
    for partner in partners:
        rules = pattern_rules(partner.learned_patterns)
        if rules:
            owners.append(PatternOwner(partner.id, partner.name, rules, partner.removed_transaction_ids()))
    return owners


def apply_patterns_to_transactions(db: Session, user_id: str) -> Dict[str, int]:
    """
    Assign unassigned transactions whose best learned pattern reaches the
    auto-apply threshold. Scans at most pattern_application_cap rows.

    Returns:
        {"processed": n, "matched": n}
    """
    owners = load_pattern_owners(db, user_id)
    if not owners:
        logger.info("pattern_application_skipped", user_id=user_id, reason="no_learned_patterns")
        return {"processed": 0, "matched": 0}

    query = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_id.is_(None),
    )

    processed = 0
    matched = 0
    for page in iter_transaction_pages(query, settings.store_batch_size, settings.pattern_application_cap):
        for transaction in page:
            hit = best_pattern_hit(transaction, owners)
            if hit is not None and should_auto_apply(hit.confidence):
                assign_by_pattern(transaction, hit)
                matched += 1
        processed += len(page)
        db.commit()

    logger.info(
        "pattern_application_completed",
        user_id=user_id,
        partners=len(owners),
        processed=processed,
        matched=matched,
    )
    return {"processed": processed, "matched": matched}
