"""
File <-> Transaction Matching

- find_transaction_matches_for_file: ranked candidates for the connect dialog
- match_file_transactions: runs after extraction, stores suggestions and
  auto-connects confident matches
- match_files_for_partner: after learning, connects a partner's receiptless
  transactions to unconnected receipts

All three use transaction_scoring.score_transaction.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.exceptions import InputValidationError
from app.models.partner import Partner
from app.models.receipt_file import ReceiptFile
from app.models.transaction import MatchedBy, Transaction
from app.services.matching.thresholds import FileMatchThresholds
from app.services.ownership import get_owned
from app.services.transaction_scoring import (
    FileMatchingData,
    TransactionMatchScore,
    as_naive_utc,
    format_breakdown,
    score_transaction,
)

logger = structlog.get_logger(__name__)

MAX_FILES_PER_PARTNER = 100
MAX_TRANSACTIONS_PER_PARTNER = 50
PARTNER_DAYS_BEFORE = 30
PARTNER_DAYS_AFTER = 7


def _parse_date(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise InputValidationError(f"Invalid date: {value}")


def file_info_to_matching_data(file_info: Dict[str, Any]) -> FileMatchingData:
    """Build matching data from an ad-hoc payload (file not stored yet)."""
    amount = file_info.get("amount")
    if amount is not None and not isinstance(amount, int):
        raise InputValidationError("amount must be an integer in minor units")
    return FileMatchingData(
        extracted_amount=amount,
        extracted_currency=file_info.get("currency"),
        extracted_date=_parse_date(file_info.get("date")),
        extracted_partner=file_info.get("partner"),
        extracted_iban=file_info.get("iban"),
        extracted_text=file_info.get("text"),
        partner_id=file_info.get("partner_id"),
    )


def candidate_transactions(db: Session, user_id: str, center_date: Optional[datetime]) -> List[Transaction]:
    """Transactions within +-30 days of the receipt date, else the most recent."""
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    if center_date is not None:
        center = as_naive_utc(center_date)
        window = timedelta(days=FileMatchThresholds.DATE_RANGE_DAYS)
        return query.filter(
            Transaction.date >= center - window,
            Transaction.date <= center + window,
        ).order_by(Transaction.date.desc()).limit(FileMatchThresholds.CANDIDATE_LIMIT).all()

    return query.order_by(Transaction.date.desc()).limit(FileMatchThresholds.RECENT_LIMIT).all()


def _matches_query(transaction: Transaction, search_query: str) -> bool:
    needle = search_query.lower()
    return any(
        needle in (value or "").lower()
        for value in (transaction.name, transaction.partner, transaction.reference)
    )


def _partner_aliases(db: Session, partner_id: Optional[str], user_id: str) -> List[str]:
    if not partner_id:
        return []
    partner = db.get(Partner, partner_id)
    if partner is None or partner.user_id != user_id:
        return []
    return [partner.name] + list(partner.aliases or [])


def find_transaction_matches_for_file(
    db: Session,
    user_id: str,
    file_id: Optional[str] = None,
    file_info: Optional[Dict[str, Any]] = None,
    exclude_transaction_ids: Optional[List[str]] = None,
    search_query: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Ranked transaction candidates for a stored receipt or ad-hoc file data.

    Raises:
        InputValidationError: Neither file_id nor file_info given
        NotFoundError / PermissionDeniedError: file_id not owned by user

    Returns:
        {"matches": [...], "total_candidates": n}
    """
    if not file_id and not file_info:
        raise InputValidationError("file_id or file_info is required")

    if file_id:
        receipt = get_owned(db, ReceiptFile, file_id, user_id, "file")
        file_data = FileMatchingData.from_row(receipt)
        excluded = set(receipt.transaction_ids or [])
    else:
        file_data = file_info_to_matching_data(file_info)
        excluded = set()
    excluded.update(exclude_transaction_ids or [])

    limit = min(limit or FileMatchThresholds.MAX_RESULTS, FileMatchThresholds.MAX_RESULTS)
    aliases = _partner_aliases(db, file_data.partner_id, user_id)

    candidates = [
        tx for tx in candidate_transactions(db, user_id, file_data.extracted_date)
        if tx.id not in excluded
    ]
    if search_query and search_query.strip():
        candidates = [tx for tx in candidates if _matches_query(tx, search_query.strip())]

    scored = [score_transaction(file_data, tx, aliases) for tx in candidates]
    matches = sorted(
        (s for s in scored if s.confidence >= FileMatchThresholds.SUGGESTION),
        key=lambda s: s.confidence,
        reverse=True,
    )

    logger.info(
        "transaction_matches_found",
        user_id=user_id,
        file_id=file_id,
        candidates=len(candidates),
        matches=len(matches),
    )
    return {
        "matches": [m.to_dict() for m in matches[:limit]],
        "total_candidates": len(candidates),
    }


def resolve_partner_conflict(
    file_partner_id: Optional[str],
    tx_partner_id: Optional[str],
    tx_matched_by: Optional[str],
) -> Optional[str]:
    """
    Which side's partner wins when a receipt is connected to a transaction.

    A transaction whose partner the user set or confirmed keeps it;
    otherwise the receipt's partner wins.

    Returns:
        "file", "transaction" or None when neither has a partner
    """
    if not file_partner_id and not tx_partner_id:
        return None
    if not tx_partner_id:
        return "file"
    if not file_partner_id:
        return "transaction"

    if tx_matched_by in (MatchedBy.MANUAL, MatchedBy.SUGGESTION):
        return "transaction"
    return "file"


def receipt_partner_removals(db: Session, receipt: ReceiptFile) -> Set[str]:
    """Transactions the user removed from the receipt's (user) partner."""
    if not receipt.partner_id or receipt.partner_type == "global":
        return set()
    partner = db.query(Partner).filter(
        Partner.id == receipt.partner_id,
        Partner.user_id == receipt.user_id,
    ).one_or_none()
    return partner.removed_transaction_ids() if partner else set()


def connect(receipt: ReceiptFile, transaction: Transaction, removed_ids: Optional[Set[str]] = None) -> None:
    """
    Link both sides and let a winning receipt partner flow to the transaction.

    The partner is not written when the user removed this transaction from
    it (removed_ids); the link itself is still made.
    """
    if transaction.id not in (receipt.transaction_ids or []):
        receipt.transaction_ids = list(receipt.transaction_ids or []) + [transaction.id]
    if receipt.id not in (transaction.file_ids or []):
        transaction.file_ids = list(transaction.file_ids or []) + [receipt.id]

    winner = resolve_partner_conflict(
        receipt.partner_id,
        transaction.partner_id, transaction.partner_matched_by,
    )
    if winner != "file" or transaction.partner_id == receipt.partner_id:
        return
    if transaction.id in (removed_ids or ()):
        logger.info("file_partner_not_applied_removed", transaction_id=transaction.id, partner_id=receipt.partner_id)
        return
    transaction.partner_id = receipt.partner_id
    transaction.partner_type = receipt.partner_type
    transaction.partner_match_confidence = receipt.partner_match_confidence
    transaction.partner_matched_by = MatchedBy.AUTO


def match_file_transactions(db: Session, receipt: ReceiptFile) -> Dict[str, int]:
    """
    Score candidate transactions for a freshly extracted receipt.

    Stores up to five suggestions and connects every match >= 85.
    Caller commits.
    """
    file_data = FileMatchingData.from_row(receipt)
    connected = set(receipt.transaction_ids or [])
    aliases = _partner_aliases(db, receipt.partner_id, receipt.user_id)
    removed = receipt_partner_removals(db, receipt)

    transactions = {
        tx.id: tx
        for tx in candidate_transactions(db, receipt.user_id, file_data.extracted_date)
        if tx.id not in connected
    }
    scored: List[TransactionMatchScore] = sorted(
        (score_transaction(file_data, tx, aliases) for tx in transactions.values()),
        key=lambda s: s.confidence,
        reverse=True,
    )
    matches = [s for s in scored if s.confidence >= FileMatchThresholds.SUGGESTION][:FileMatchThresholds.MAX_SUGGESTIONS]

    auto_connected = 0
    for match in matches:
        if match.confidence < FileMatchThresholds.AUTO_MATCH:
            continue
        connect(receipt, transactions[match.transaction_id], removed)
        auto_connected += 1
        logger.info(
            "file_auto_connected",
            file_id=receipt.id,
            transaction_id=match.transaction_id,
            confidence=match.confidence,
            breakdown=format_breakdown(match.breakdown),
        )

    receipt.transaction_suggestions = [m.to_dict() for m in matches]
    receipt.transaction_matched_at = datetime.utcnow()

    return {"candidates": len(transactions), "suggested": len(matches), "auto_connected": auto_connected}


def match_files_for_partner(db: Session, user_id: str, partner_id: str) -> Dict[str, int]:
    """
    Connect a partner's receiptless transactions to unconnected receipts.

    Each transaction looks at receipts from 30 days before to 7 days after
    its date; the best receipt >= 85 is connected. Commits once.

    Returns:
        {"processed": n, "auto_matched": n, "suggested": n}
    """
    partner = get_owned(db, Partner, partner_id, user_id, "partner")
    aliases = [partner.name] + list(partner.aliases or [])
    removed = partner.removed_transaction_ids()

    transactions = [
        tx for tx in db.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.partner_id == partner_id,
        ).order_by(Transaction.date.desc()).limit(MAX_TRANSACTIONS_PER_PARTNER * 4).all()
        if not tx.file_ids
    ][:MAX_TRANSACTIONS_PER_PARTNER]

    if not transactions:
        return {"processed": 0, "auto_matched": 0, "suggested": 0}

    receipts = db.query(ReceiptFile).filter(
        ReceiptFile.user_id == user_id,
        ReceiptFile.extraction_complete.is_(True),
        or_(ReceiptFile.partner_id.is_(None), ReceiptFile.partner_id == partner_id),
    ).order_by(ReceiptFile.created_at.desc()).limit(MAX_FILES_PER_PARTNER * 4).all()
    receipts = [r for r in receipts if not r.transaction_ids][:MAX_FILES_PER_PARTNER]

    auto_matched = 0
    suggested = 0
    used = set()
    for transaction in transactions:
        tx_date = as_naive_utc(transaction.date)
        best = None
        for receipt in receipts:
            if receipt.id in used:
                continue
            receipt_date = as_naive_utc(receipt.extracted_date)
            if receipt_date is not None and not (
                tx_date - timedelta(days=PARTNER_DAYS_BEFORE) <= receipt_date <= tx_date + timedelta(days=PARTNER_DAYS_AFTER)
            ):
                continue
            score = score_transaction(FileMatchingData.from_row(receipt), transaction, aliases)
            if best is None or score.confidence > best[0].confidence:
                best = (score, receipt)

        if best is None or best[0].confidence < FileMatchThresholds.SUGGESTION:
            continue
        if best[0].confidence >= FileMatchThresholds.AUTO_MATCH:
            connect(best[1], transaction, removed)
            used.add(best[1].id)
            auto_matched += 1
        else:
            suggested += 1

    db.commit()
    logger.info(
        "partner_files_matched",
        user_id=user_id,
        partner_id=partner_id,
        processed=len(transactions),
        auto_matched=auto_matched,
        suggested=suggested,
    )
    return {"processed": len(transactions), "auto_matched": auto_matched, "suggested": suggested}
