"""
Partner Match Orchestrator

Runs the signal scorer for one transaction against every candidate partner
(user-owned first, then global), ranks the results and decides between
auto-assignment and suggestion.

Design decisions:
- match_record() is pure: records and partner profiles in, ranked matches out
- Suggestions are always overwritten, never merged
- User-confirmed assignments (manual/suggestion/ai) are never overwritten by
  a matching run, including match_all
- Manually removed (transaction, partner) pairs are filtered before ranking
"""

from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import InputValidationError
from app.models.partner import GlobalPartner, Partner
from app.models.transaction import MatchedBy, Transaction
from app.services.matching.records import (
    PARTNER_TYPE_GLOBAL,
    PARTNER_TYPE_USER,
    MatchRecord,
    PartnerMatch,
    PartnerProfile,
)
from app.services.matching.signals import score_partner
from app.services.matching.thresholds import PartnerThresholds
from app.services.notifications import notify_partner_matching
from app.services.pagination import iter_transaction_pages

logger = structlog.get_logger(__name__)


def should_auto_apply(confidence: Optional[float]) -> bool:
    """89 auto-applies, 88 only suggests."""
    return confidence is not None and confidence >= PartnerThresholds.AUTO_APPLY


def _compare(a: PartnerMatch, b: PartnerMatch) -> int:
    a_auto = should_auto_apply(a.confidence)
    b_auto = should_auto_apply(b.confidence)

    # Both assignable: a user partner beats a global one regardless of score
    if a_auto and b_auto and a.partner_type != b.partner_type:
        return -1 if a.partner_type == PARTNER_TYPE_USER else 1
    if a_auto != b_auto:
        return -1 if a_auto else 1

    if a.confidence != b.confidence:
        return -1 if a.confidence > b.confidence else 1
    if a.partner_type != b.partner_type:
        return -1 if a.partner_type == PARTNER_TYPE_USER else 1
    return 0


def rank_matches(matches: List[PartnerMatch]) -> List[PartnerMatch]:
    """Stable sort: assignable first, user over global, then by confidence."""
    return sorted(matches, key=cmp_to_key(_compare))


def match_record(
    record: MatchRecord,
    user_partners: List[PartnerProfile],
    global_partners: List[PartnerProfile],
    removals: Optional[Dict[str, Set[str]]] = None,
) -> List[PartnerMatch]:
    """
    Ranked partner matches for one record, at most three.

    Args:
        record: Transaction text and identifiers
        user_partners: The user's active partners
        global_partners: Shared templates not yet localized by the user
        removals: partner_id -> transaction ids manually removed from it

    Returns:
        Up to MAX_SUGGESTIONS matches, best first
    """
    removals = removals or {}
    seen = set()
    matches = []

    for partner in list(user_partners) + list(global_partners):
        key = (partner.id, partner.partner_type)
        if key in seen:
            continue
        if record.id in removals.get(partner.id, ()):
            continue
        result = score_partner(record, partner)
        if result is None:
            continue
        seen.add(key)
        matches.append(result)

    return rank_matches(matches)[:PartnerThresholds.MAX_SUGGESTIONS]


@dataclass
class PartnerCandidates:
    """Everything a user's transactions are matched against."""
    user_partners: List[PartnerProfile] = field(default_factory=list)
    global_partners: List[PartnerProfile] = field(default_factory=list)
    removals: Dict[str, Set[str]] = field(default_factory=dict)

    def match(self, record: MatchRecord) -> List[PartnerMatch]:
        return match_record(record, self.user_partners, self.global_partners, self.removals)


def load_partner_candidates(db: Session, user_id: str) -> PartnerCandidates:
    """
    Load the user's active partners and the global templates.

    Global partners the user already localized are skipped: the local copy
    carries the same keys plus the user's learned patterns.
    """
    partners = db.query(Partner).filter(
        Partner.user_id == user_id,
        Partner.is_active.is_(True),
    ).all()
    localized = {p.global_partner_id for p in partners if p.global_partner_id}

    global_rows = db.query(GlobalPartner).filter(GlobalPartner.is_active.is_(True)).all()

    candidates = PartnerCandidates(
        user_partners=[PartnerProfile.from_row(p, PARTNER_TYPE_USER) for p in partners],
        global_partners=[
            PartnerProfile.from_row(g, PARTNER_TYPE_GLOBAL)
            for g in global_rows
            if g.id not in localized
        ],
        removals={p.id: p.removed_transaction_ids() for p in partners if p.manual_removals},
    )
    logger.debug(
        "partner_candidates_loaded",
        user_id=user_id,
        user_partners=len(candidates.user_partners),
        global_partners=len(candidates.global_partners),
    )
    return candidates


def is_user_confirmed(transaction: Transaction) -> bool:
    return transaction.partner_id is not None and transaction.partner_matched_by in MatchedBy.USER_CONFIRMED


def apply_matches(transaction: Transaction, matches: List[PartnerMatch]) -> str:
    """
    Write suggestions and, when the top match clears the threshold, the
    assignment.

    Returns:
        "auto", "suggested" or "none"
    """
    transaction.partner_suggestions = [m.to_suggestion() for m in matches]
    if not matches:
        return "none"

    top = matches[0]
    if should_auto_apply(top.confidence) and not is_user_confirmed(transaction):
        transaction.partner_id = top.partner_id
        transaction.partner_type = top.partner_type
        transaction.partner_match_confidence = top.confidence
        transaction.partner_matched_by = MatchedBy.AUTO
        return "auto"
    return "suggested"


def _select_transactions(db: Session, user_id: str, transaction_ids: Optional[List[str]], match_all: bool):
    base = db.query(Transaction).filter(Transaction.user_id == user_id)

    if transaction_ids is not None and not match_all:
        if not transaction_ids:
            return
        rows = base.filter(Transaction.id.in_(transaction_ids)).all()
        skipped = len(set(transaction_ids)) - len(rows)
        if skipped:
            logger.warning("transactions_skipped_not_owned", user_id=user_id, count=skipped)
        yield rows
    elif not match_all:
        yield base.filter(Transaction.partner_id.is_(None)).limit(PartnerThresholds.UNMATCHED_BATCH_LIMIT).all()
    else:
        yield from iter_transaction_pages(base, settings.store_batch_size, settings.pattern_application_cap)


def match_partners(
    db: Session,
    user_id: str,
    transaction_ids: Optional[List[str]] = None,
    match_all: bool = False,
    chain_categories: bool = True,
) -> Dict[str, int]:
    """
    Match a user's transactions against all partners.

    Modes:
    - transaction_ids: just those (foreign ids are skipped)
    - default: unassigned transactions, up to 1000
    - match_all: every transaction, paginated

    Commits every store_batch_size rows, then writes a summary notification
    and chains category matching for the processed ids.

    Returns:
        {"processed": n, "auto_matched": n, "with_suggestions": n}
    """
    if transaction_ids is not None:
        if not isinstance(transaction_ids, list) or not all(isinstance(t, str) and t for t in transaction_ids):
            raise InputValidationError("transaction_ids must be a list of ids")

    log = logger.bind(user_id=user_id, match_all=match_all)
    candidates = load_partner_candidates(db, user_id)

    processed = 0
    auto_matched = 0
    with_suggestions = 0
    processed_ids: List[str] = []
    pending = 0

    for page in _select_transactions(db, user_id, transaction_ids, match_all):
        for transaction in page:
            outcome = apply_matches(transaction, candidates.match(MatchRecord.from_row(transaction)))
            processed += 1
            processed_ids.append(transaction.id)
            if outcome == "auto":
                auto_matched += 1
            elif outcome == "suggested":
                with_suggestions += 1

            pending += 1
            if pending >= settings.store_batch_size:
                db.commit()
                pending = 0
        if pending:
            db.commit()
            pending = 0

    notify_partner_matching(db, user_id, auto_matched, with_suggestions)
    db.commit()

    log.info(
        "partner_matching_completed",
        processed=processed,
        auto_matched=auto_matched,
        with_suggestions=with_suggestions,
    )

    if chain_categories and processed_ids:
        try:
            from app.services.category_matcher import match_categories
            match_categories(db, user_id, transaction_ids=processed_ids)
        except Exception as e:
            db.rollback()
            log.error("category_matching_chain_failed", error=str(e), exc_info=True)

    return {
        "processed": processed,
        "auto_matched": auto_matched,
        "with_suggestions": with_suggestions,
    }
