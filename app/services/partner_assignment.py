"""
Partner Assignment

User-facing writes on the (transaction, partner) relation and the hooks
they trigger:

- assign: blocks automatic re-assignment onto a pair the user removed; a
  manual assignment lifts the removal instead
- remove: records negative evidence on the partner
- both enqueue pattern learning (debounced) and re-run category matching
- localize: copies a global partner into the user's own partners
- update: a change to a matching key re-matches unassigned receipts
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from app.exceptions import AssignmentBlockedError, InputValidationError, NotFoundError
from app.models.partner import GlobalPartner, Partner
from app.models.transaction import MatchedBy, Transaction
from app.services.learning_queue import enqueue_partner_for_learning
from app.services.matching.records import PARTNER_TYPE_GLOBAL, PARTNER_TYPE_USER
from app.services.ownership import get_owned, require_id

logger = structlog.get_logger(__name__)

MATCHING_FIELDS = ("name", "aliases", "website", "vat_id", "ibans", "email_domains")
EDITABLE_FIELDS = MATCHING_FIELDS + ("is_active",)
LIST_FIELDS = ("aliases", "ibans", "email_domains")

ALL_MATCHED_BY = (MatchedBy.MANUAL, MatchedBy.SUGGESTION, MatchedBy.AUTO, MatchedBy.AI)


def _load_partner(db: Session, user_id: str, partner_id: str, partner_type: str):
    if partner_type == PARTNER_TYPE_GLOBAL:
        partner = db.get(GlobalPartner, partner_id)
        if partner is None or not partner.is_active:
            raise NotFoundError("global partner", partner_id)
        return partner
    return get_owned(db, Partner, partner_id, user_id, "partner")


def _without_removal(removals: Optional[List[Dict[str, Any]]], transaction_id: str) -> List[Dict[str, Any]]:
    return [
        r for r in (removals or [])
        if not (isinstance(r, dict) and r.get("transaction_id") == transaction_id)
    ]


def _rerun_categories(db: Session, transaction: Transaction) -> None:
    from app.services.category_matcher import on_transaction_partner_changed

    try:
        on_transaction_partner_changed(db, transaction)
    except Exception as e:
        db.rollback()
        logger.error("category_rematch_failed", transaction_id=transaction.id, error=str(e), exc_info=True)


def assign_partner_to_transaction(
    db: Session,
    user_id: str,
    transaction_id: str,
    partner_id: str,
    partner_type: str,
    matched_by: str,
    confidence: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Assign a partner to one transaction.

    Raises:
        InputValidationError: Missing id or unknown partner_type / matched_by
        NotFoundError / PermissionDeniedError: Transaction or partner not visible
        AssignmentBlockedError: auto/ai assignment onto a removed pair

    Returns:
        {"success": True, "learning_queued": bool}
    """
    transaction_id = require_id(transaction_id, "transaction_id")
    partner_id = require_id(partner_id, "partner_id")
    if partner_type not in (PARTNER_TYPE_USER, PARTNER_TYPE_GLOBAL):
        raise InputValidationError("partner_type must be 'user' or 'global'")
    if matched_by not in ALL_MATCHED_BY:
        raise InputValidationError(f"matched_by must be one of {', '.join(ALL_MATCHED_BY)}")

    transaction = get_owned(db, Transaction, transaction_id, user_id, "transaction")
    partner = _load_partner(db, user_id, partner_id, partner_type)

    was_removed = partner_type == PARTNER_TYPE_USER and transaction_id in partner.removed_transaction_ids()
    if was_removed and matched_by in (MatchedBy.AUTO, MatchedBy.AI):
        logger.info("assignment_blocked_removed_pair", transaction_id=transaction_id, partner_id=partner_id, matched_by=matched_by)
        raise AssignmentBlockedError(
            "Partner was previously removed from this transaction; assign it manually to override"
        )
    if was_removed:
        partner.manual_removals = _without_removal(partner.manual_removals, transaction_id)
        logger.info("manual_removal_lifted", transaction_id=transaction_id, partner_id=partner_id, matched_by=matched_by)

    transaction.partner_id = partner_id
    transaction.partner_type = partner_type
    transaction.partner_matched_by = matched_by
    transaction.partner_match_confidence = confidence
    db.commit()

    logger.info(
        "partner_assigned",
        user_id=user_id,
        transaction_id=transaction_id,
        partner_id=partner_id,
        partner_type=partner_type,
        matched_by=matched_by,
    )

    learning_queued = False
    if partner_type == PARTNER_TYPE_USER and matched_by in MatchedBy.USER_CONFIRMED:
        learning_queued = enqueue_partner_for_learning(db, user_id, partner_id)["queued"]

    _rerun_categories(db, transaction)
    return {"success": True, "learning_queued": learning_queued}


def remove_partner_from_transaction(db: Session, user_id: str, transaction_id: str) -> Dict[str, Any]:
    """
    Clear a transaction's partner.

    For a user partner the removal is stored as negative evidence with the
    transaction text, so neither matching nor learning reproduces it.
    """
    transaction_id = require_id(transaction_id, "transaction_id")
    transaction = get_owned(db, Transaction, transaction_id, user_id, "transaction")

    partner_id = transaction.partner_id
    if partner_id is None:
        return {"success": True, "learning_queued": False}

    partner = None
    if transaction.partner_type == PARTNER_TYPE_USER:
        partner = db.get(Partner, partner_id)

    if partner is not None and partner.user_id == user_id:
        removals = _without_removal(partner.manual_removals, transaction_id)
        removals.append({
            "transaction_id": transaction_id,
            "partner": transaction.partner,
            "name": transaction.name or "",
            "removed_at": datetime.utcnow().isoformat(),
        })
        partner.manual_removals = removals

    transaction.clear_partner()
    db.commit()
    logger.info("partner_removed", user_id=user_id, transaction_id=transaction_id, partner_id=partner_id)

    learning_queued = False
    if partner is not None and partner.user_id == user_id:
        learning_queued = enqueue_partner_for_learning(db, user_id, partner_id)["queued"]

    _rerun_categories(db, transaction)
    return {"success": True, "learning_queued": learning_queued}


def localize_global_partner(db: Session, user_id: str, global_partner_id: str) -> Dict[str, Any]:
    """
    Give the user an own copy of a global partner and move every assignment
    and suggestion that points at the global one onto the copy.

    An existing active copy is reused.
    """
    global_partner_id = require_id(global_partner_id, "global_partner_id")
    template = db.get(GlobalPartner, global_partner_id)
    if template is None:
        raise NotFoundError("global partner", global_partner_id)

    local = db.query(Partner).filter(
        Partner.user_id == user_id,
        Partner.global_partner_id == global_partner_id,
        Partner.is_active.is_(True),
    ).first()
    created = local is None
    if created:
        local = Partner(
            user_id=user_id,
            global_partner_id=global_partner_id,
            name=template.name,
            aliases=list(template.aliases or []),
            ibans=list(template.ibans or []),
            vat_id=template.vat_id,
            website=template.website,
            email_domains=list(template.email_domains or []),
            learned_patterns=[],
            manual_removals=[],
            is_active=True,
        )
        db.add(local)
        db.flush()

    assigned = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.partner_type == PARTNER_TYPE_GLOBAL,
        Transaction.partner_id == global_partner_id,
    ).all()
    for transaction in assigned:
        transaction.partner_id = local.id
        transaction.partner_type = PARTNER_TYPE_USER

    suggestions_updated = 0
    for transaction in db.query(Transaction).filter(Transaction.user_id == user_id).order_by(
        Transaction.updated_at.desc()
    ).limit(500).all():
        suggestions = transaction.partner_suggestions or []
        if not any(s.get("partner_id") == global_partner_id and s.get("partner_type") == PARTNER_TYPE_GLOBAL for s in suggestions):
            continue
        transaction.partner_suggestions = [
            dict(s, partner_id=local.id, partner_type=PARTNER_TYPE_USER)
            if s.get("partner_id") == global_partner_id and s.get("partner_type") == PARTNER_TYPE_GLOBAL
            else s
            for s in suggestions
        ]
        suggestions_updated += 1

    db.commit()
    logger.info(
        "global_partner_localized",
        user_id=user_id,
        global_partner_id=global_partner_id,
        partner_id=local.id,
        created=created,
        transactions_updated=len(assigned),
        suggestions_updated=suggestions_updated,
    )
    return {
        "partner_id": local.id,
        "created": created,
        "transactions_updated": len(assigned),
        "suggestions_updated": suggestions_updated,
    }


def matching_fields_changed(changed_fields: Iterable[str]) -> bool:
    return any(f in MATCHING_FIELDS for f in changed_fields)


def on_partner_updated(db: Session, user_id: str, partner_id: str, changed_fields: Iterable[str]) -> Dict[str, Any]:
    """Re-match unassigned receipts when a key the matchers read has changed."""
    from app.services.file_partner_matcher import rematch_unassigned_files

    changed = [f for f in changed_fields if f in MATCHING_FIELDS]
    if not changed:
        return {"rematched": False}

    stats = rematch_unassigned_files(db, user_id)
    logger.info("partner_update_rematched_files", user_id=user_id, partner_id=partner_id, fields=changed, **stats)
    return {"rematched": True, **stats}


def update_partner(db: Session, user_id: str, partner_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply edits to a user partner and queue the receipt re-match if needed.

    Returns:
        {"partner_id": id, "changed_fields": [...], "rematch_queued": bool}
    """
    partner_id = require_id(partner_id, "partner_id")
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise InputValidationError(f"fields not editable: {', '.join(unknown)}")
    if "name" in changes and not (isinstance(changes["name"], str) and changes["name"].strip()):
        raise InputValidationError("name must not be empty")
    if "is_active" in changes and not isinstance(changes["is_active"], bool):
        raise InputValidationError("is_active must be true or false")
    for field_name in LIST_FIELDS:
        value = changes.get(field_name)
        if value is not None and not (isinstance(value, list) and all(isinstance(v, str) for v in value)):
            raise InputValidationError(f"{field_name} must be a list of strings")
    for field_name in ("website", "vat_id"):
        value = changes.get(field_name)
        if value is not None and not isinstance(value, str):
            raise InputValidationError(f"{field_name} must be a string")

    partner = get_owned(db, Partner, partner_id, user_id, "partner")
    changed = []
    for field_name, value in changes.items():
        if field_name in LIST_FIELDS:
            value = list(value or [])
        if getattr(partner, field_name) != value:
            setattr(partner, field_name, value)
            changed.append(field_name)
    db.commit()

    rematch_queued = False
    if matching_fields_changed(changed):
        try:
            from app.actors.matching import rematch_partner_files
            rematch_partner_files.send(user_id, partner_id, changed)
            rematch_queued = True
        except Exception as e:
            logger.error("rematch_files_enqueue_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)

    logger.info("partner_updated", user_id=user_id, partner_id=partner_id, changed_fields=changed)
    return {"partner_id": partner_id, "changed_fields": changed, "rematch_queued": rematch_queued}
