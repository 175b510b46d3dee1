"""
Pattern Learning Workflow

Learns glob patterns for one partner from the user's own decisions:

1. Positive set: transactions the user assigned to the partner (manual,
   accepted suggestion, AI-assisted). Never "auto", so imprecise rules
   cannot teach themselves.
2. Negative sets: transactions assigned to other partners (collisions) and
   transactions the user removed from this partner (false positives).
3. No positives left: clear the patterns, cascade, notify, stop.
4. Oracle proposal -> safety filter -> dry run -> oracle verification.
5. Persist, cascade, re-match unassigned transactions, notify and chain
   file matching for the partner.

An oracle failure keeps the stored patterns untouched; a valid reply with
no usable patterns replaces them with an empty set.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import MatchingError, OracleError
from app.models.partner import GlobalPartner, Partner
from app.models.transaction import MatchedBy, Transaction
from app.services.cascade import cascade_unassign
from app.services.matching.records import PARTNER_TYPE_GLOBAL, pattern_rules
from app.services.matching.thresholds import LearningLimits
from app.services.notifications import notify_pattern_learned, notify_patterns_cleared
from app.services.ownership import get_owned, require_id
from app.services.pagination import iter_transaction_pages
from app.services.partner_matcher import should_auto_apply
from app.services.pattern_application import PatternOwner, assign_by_pattern, best_pattern_hit
from app.services.pattern_learning.dry_run import dry_run_patterns, verify_candidates
from app.services.pattern_learning.oracle import (
    CompletionOracle,
    OracleResult,
    get_oracle,
    propose_patterns,
)
from app.services.pattern_learning.prompts import build_proposal_prompt
from app.services.pattern_learning.safety import PatternCandidate, filter_candidates

logger = structlog.get_logger(__name__)


def positive_transactions(db: Session, user_id: str, partner_id: str) -> List[Transaction]:
    return db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_id == partner_id,
        Transaction.partner_matched_by.in_(MatchedBy.USER_CONFIRMED),
    ).order_by(Transaction.date.desc()).limit(LearningLimits.POSITIVE_LIMIT).all()


def removal_records(partner: Partner) -> List[Dict[str, Any]]:
    return [
        {
            "transaction_id": r.get("transaction_id"),
            "partner": r.get("partner") or None,
            "name": r.get("name") or "",
        }
        for r in (partner.manual_removals or [])
        if isinstance(r, dict)
    ]


def is_collision(transaction: Transaction, partner: Partner) -> bool:
    """
    Assigned to a different partner in a way that counts as evidence.

    The partner's own global template is not "different", and automatic
    assignments to global partners are too unreliable to count.
    """
    other = transaction.partner_id
    if not other or other == partner.id:
        return False
    if partner.global_partner_id and other == partner.global_partner_id:
        return False
    if transaction.partner_type == PARTNER_TYPE_GLOBAL and transaction.partner_matched_by not in (
        MatchedBy.MANUAL, MatchedBy.SUGGESTION
    ):
        return False
    return True


def partner_names(db: Session, partner_ids: Set[str]) -> Dict[str, str]:
    """Display names for user and global partner ids."""
    if not partner_ids:
        return {}
    names = {
        row.id: row.name or "Unknown"
        for row in db.query(Partner.id, Partner.name).filter(Partner.id.in_(partner_ids)).all()
    }
    for row in db.query(GlobalPartner.id, GlobalPartner.name).filter(GlobalPartner.id.in_(partner_ids)).all():
        names.setdefault(row.id, row.name or "Unknown")
    return names


def collision_records(db: Session, user_id: str, partner: Partner) -> Tuple[List[Dict[str, Any]], Dict[str, str]]:
    """
    Transactions assigned to other partners, from the most recent scan window.

    Returns:
        (collision dicts, partner id -> name for every assigned partner seen)
    """
    assigned = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_id.isnot(None),
    ).order_by(Transaction.date.desc()).limit(LearningLimits.COLLISION_SCAN_LIMIT).all()

    names = partner_names(db, {tx.partner_id for tx in assigned})
    collisions = [
        {
            "transaction_id": tx.id,
            "partner": tx.partner,
            "name": tx.name or "",
            "assigned_partner_id": tx.partner_id,
            "assigned_partner_name": names.get(tx.partner_id, "Unknown"),
        }
        for tx in assigned
        if is_collision(tx, partner)
    ]
    return collisions, names


def _positive_dict(tx: Transaction) -> Dict[str, Any]:
    return {"id": tx.id, "partner": tx.partner, "name": tx.name or ""}


def _result(patterns: List[Dict[str, Any]], **extra) -> Dict[str, Any]:
    result = {
        "patterns_learned": len(patterns),
        "patterns": [{"pattern": p["pattern"], "confidence": p["confidence"]} for p in patterns],
    }
    result.update(extra)
    return result


def clear_patterns(db: Session, user_id: str, partner: Partner) -> int:
    """Drop all learned patterns and revoke the automatic assignments they made."""
    partner.learned_patterns = []
    partner.patterns_updated_at = datetime.utcnow()
    db.commit()

    unassigned = cascade_unassign(db, user_id, partner.id, [])
    if unassigned > 0:
        notify_patterns_cleared(db, user_id, partner.id, partner.name, unassigned)
        db.commit()
    return unassigned


def rematch_unassigned(
    db: Session,
    user_id: str,
    partner: Partner,
    learned: List[Dict[str, Any]],
) -> Tuple[int, List[Dict[str, Any]]]:
    """
    Match unassigned transactions against the new patterns of one partner.

    Returns:
        (number assigned, preview of the first few)
    """
    owner = PatternOwner(partner.id, partner.name, pattern_rules(learned), partner.removed_transaction_ids())
    query = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_id.is_(None),
    )

    matched = 0
    preview = []
    for page in iter_transaction_pages(query, settings.store_batch_size, settings.pattern_application_cap):
        for transaction in page:
            hit = best_pattern_hit(transaction, [owner], flexible=True)
            if hit is None or not should_auto_apply(hit.confidence):
                continue
            assign_by_pattern(transaction, hit)
            matched += 1
            if len(preview) < LearningLimits.NOTIFICATION_PREVIEW:
                preview.append({
                    "id": transaction.id,
                    "name": transaction.name or transaction.partner or "Unknown",
                    "amount": transaction.amount,
                    "partner": transaction.partner,
                })
        db.commit()
    return matched, preview


def chain_file_matching(user_id: str, partner_id: str) -> None:
    """Queue receipt matching for the partner; failure to queue is logged only."""
    try:
        from app.actors.matching import match_partner_files
        match_partner_files.send(user_id, partner_id)
    except Exception as e:
        logger.error("file_matching_chain_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)


def select_patterns(
    db: Session,
    user_id: str,
    partner: Partner,
    oracle: CompletionOracle,
    positives: List[Transaction],
) -> OracleResult:
    """
    Proposal, safety filter and (optional) dry-run verification.

    Returns:
        OracleResult whose items are the surviving PatternCandidates, or the
        proposal error
    """
    removals = removal_records(partner)
    collisions, names = collision_records(db, user_id, partner)

    prompt = build_proposal_prompt(
        partner.name,
        list(partner.aliases or []),
        [_positive_dict(tx) for tx in positives],
        collisions,
        removals,
    )
    proposal = propose_patterns(oracle, prompt)
    if not proposal.ok:
        return proposal

    report = filter_candidates(proposal.items, removals, collisions)
    logger.info(
        "pattern_candidates_filtered",
        partner_id=partner.id,
        proposed=len(proposal.items),
        accepted=len(report.accepted),
        rejected=report.rejected,
    )

    candidates: List[PatternCandidate] = report.accepted
    if candidates and settings.dry_run_verification_enabled:
        results, total = dry_run_patterns(db, user_id, partner.id, candidates, names)
        candidates = verify_candidates(oracle, partner.name, candidates, results, total)
    return OracleResult(items=candidates)


def learn_partner_patterns(
    db: Session,
    user_id: str,
    partner_id: str,
    transaction_id: Optional[str] = None,
    oracle: Optional[CompletionOracle] = None,
) -> Dict[str, Any]:
    """
    Learn and persist patterns for one partner.

    Args:
        db: Database session (committed here)
        user_id: Owner of the partner
        partner_id: Partner to learn for
        transaction_id: The assignment that triggered learning (logging only)
        oracle: Completion oracle, defaults to Claude

    Raises:
        InputValidationError: partner_id missing
        NotFoundError / PermissionDeniedError: partner not owned by user

    Returns:
        {"patterns_learned": n, "patterns": [{"pattern", "confidence"}], ...}
    """
    partner_id = require_id(partner_id, "partner_id")
    partner = get_owned(db, Partner, partner_id, user_id, "partner")
    log = logger.bind(user_id=user_id, partner_id=partner_id, trigger_transaction_id=transaction_id)

    positives = positive_transactions(db, user_id, partner_id)
    if not positives:
        unassigned = clear_patterns(db, user_id, partner)
        log.info("patterns_cleared", unassigned=unassigned)
        return _result([], unassigned=unassigned)

    try:
        oracle = oracle or get_oracle()
        selection = select_patterns(db, user_id, partner, oracle, positives)
    except OracleError as e:
        selection = OracleResult(error=e)

    if not selection.ok:
        # Keep what we have; receipt matching does not depend on patterns
        log.warning("pattern_learning_degraded", reason=selection.error.reason)
        chain_file_matching(user_id, partner_id)
        return _result(list(partner.learned_patterns or []), oracle_error=selection.error.reason)

    now = datetime.utcnow()
    source_ids = [tx.id for tx in positives]
    learned = [
        {
            "pattern": c.pattern,
            "confidence": c.confidence,
            "created_at": now.isoformat(),
            "source_transaction_ids": source_ids,
        }
        for c in selection.items
    ]
    partner.learned_patterns = learned
    partner.patterns_updated_at = now
    db.commit()

    unassigned = cascade_unassign(db, user_id, partner_id, learned)
    matched, preview = rematch_unassigned(db, user_id, partner, learned) if learned else (0, [])

    if learned:
        notify_pattern_learned(
            db, user_id, partner_id, partner.name,
            [p["pattern"] for p in learned], matched, preview,
        )
        db.commit()

    log.info(
        "patterns_learned",
        patterns=[p["pattern"] for p in learned],
        positives=len(positives),
        unassigned=unassigned,
        matched=matched,
    )
    chain_file_matching(user_id, partner_id)
    return _result(learned, unassigned=unassigned, matched=matched)


def learn_patterns_for_partners_batch(
    db: Session,
    user_id: str,
    partner_ids: List[str],
    oracle: Optional[CompletionOracle] = None,
) -> Dict[str, Any]:
    """
    Learn for several partners in sequence. One partner failing is logged
    and skipped; the rest of the batch still runs.

    Returns:
        {"processed": n, "failed": [partner ids]}
    """
    processed = 0
    failed = []
    for partner_id in partner_ids:
        try:
            learn_partner_patterns(db, user_id, partner_id, oracle=oracle)
            processed += 1
        except MatchingError as e:
            db.rollback()
            logger.warning("batch_learning_partner_skipped", user_id=user_id, partner_id=partner_id, error=str(e))
            failed.append(partner_id)
        except Exception as e:
            db.rollback()
            logger.error("batch_learning_partner_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)
            failed.append(partner_id)

    logger.info("batch_learning_completed", user_id=user_id, processed=processed, failed=len(failed))
    return {"processed": processed, "failed": failed}
