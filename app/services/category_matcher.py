"""
No-Receipt Category Matching

Suggests a no-receipt category (bank fees, payroll, ...) for transactions
that have neither a category nor a receipt. Categories match through linked
partners and through learned glob patterns:

    partner only        89
    pattern only        pattern confidence
    partner + pattern   pattern confidence + 15

plus a logarithmic usage boost (max 10) and +8 when the linked partner has
never had a receipt. Capped at 100; suggest >= 60, auto-apply >= 89.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import structlog
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import InputValidationError
from app.models.category import RECEIPT_LOST_TEMPLATE, NoReceiptCategory
from app.models.receipt_file import ReceiptFile
from app.models.transaction import MatchedBy, Transaction
from app.services.matching import glob
from app.services.matching.records import pattern_rules
from app.services.matching.thresholds import CategoryThresholds
from app.services.pagination import iter_transaction_pages

logger = structlog.get_logger(__name__)


@dataclass
class CategorySuggestion:
    category_id: str
    template_id: str
    confidence: float
    source: str  # partner, pattern, partner+pattern

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "template_id": self.template_id,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass
class CategoryContext:
    """Per-run lookups shared by every transaction."""
    categories: List[NoReceiptCategory] = field(default_factory=list)
    removals: Dict[str, Set[str]] = field(default_factory=dict)
    partners_without_files: Set[str] = field(default_factory=set)


def usage_boost(transaction_count: Optional[int]) -> float:
    """10 uses ~5 points, 100 uses ~10 points (capped)."""
    if not transaction_count or transaction_count <= 0:
        return 0.0
    return min(CategoryThresholds.USAGE_BOOST_MAX, math.log10(transaction_count + 1) * 5)


def best_pattern_confidence(transaction: Any, category: Any) -> Optional[float]:
    best = None
    for rule in pattern_rules(category.learned_patterns):
        if glob.match_flexible(rule.pattern, transaction.name, transaction.partner, transaction.reference):
            if best is None or rule.confidence > best:
                best = rule.confidence
    return best


def score_category(
    transaction: Any,
    category: Any,
    partners_without_files: Optional[Set[str]] = None,
) -> Optional[CategorySuggestion]:
    partner_linked = bool(transaction.partner_id) and transaction.partner_id in (category.matched_partner_ids or [])
    pattern_confidence = best_pattern_confidence(transaction, category)

    if partner_linked and pattern_confidence is not None:
        confidence = pattern_confidence + CategoryThresholds.COMBINED_MATCH_BONUS
        source = "partner+pattern"
    elif partner_linked:
        confidence = CategoryThresholds.PARTNER_MATCH_CONFIDENCE
        source = "partner"
    elif pattern_confidence is not None:
        confidence = pattern_confidence
        source = "pattern"
    else:
        return None

    confidence += usage_boost(category.transaction_count)
    if partner_linked and transaction.partner_id in (partners_without_files or set()):
        confidence += CategoryThresholds.NO_FILE_EVIDENCE_BOOST
    confidence = min(100, round(confidence))

    if confidence < CategoryThresholds.SUGGESTION:
        return None
    return CategorySuggestion(category.id, category.template_id, confidence, source)


def match_transaction_to_categories(
    transaction: Any,
    categories: List[Any],
    removals: Optional[Dict[str, Set[str]]] = None,
    partners_without_files: Optional[Set[str]] = None,
) -> List[CategorySuggestion]:
    """Top category suggestions for one transaction, best first."""
    removals = removals or {}
    suggestions = []
    for category in categories:
        # receipt-lost needs an explicit user decision
        if category.template_id == RECEIPT_LOST_TEMPLATE or not category.is_active:
            continue
        if transaction.id in removals.get(category.id, ()):
            continue
        suggestion = score_category(transaction, category, partners_without_files)
        if suggestion is not None:
            suggestions.append(suggestion)

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:CategoryThresholds.MAX_SUGGESTIONS]


def is_eligible(transaction: Any) -> bool:
    return not transaction.no_receipt_category_id and not transaction.file_ids


def should_auto_apply_category(confidence: float) -> bool:
    return confidence >= CategoryThresholds.AUTO_APPLY


def _removed_ids(category: NoReceiptCategory) -> Set[str]:
    return {
        r.get("transaction_id")
        for r in (category.manual_removals or [])
        if isinstance(r, dict) and r.get("transaction_id")
    }


def load_category_context(db: Session, user_id: str) -> CategoryContext:
    categories = db.query(NoReceiptCategory).filter(
        NoReceiptCategory.user_id == user_id,
        NoReceiptCategory.is_active.is_(True),
    ).all()

    linked = set()
    for category in categories:
        linked.update(category.matched_partner_ids or [])

    with_files = set()
    if linked:
        rows = db.query(ReceiptFile.partner_id).filter(
            ReceiptFile.user_id == user_id,
            ReceiptFile.partner_id.in_(linked),
        ).distinct().all()
        with_files = {row[0] for row in rows}

    return CategoryContext(
        categories=categories,
        removals={c.id: _removed_ids(c) for c in categories if c.manual_removals},
        partners_without_files=linked - with_files,
    )


def apply_category_suggestions(
    transaction: Transaction,
    suggestions: List[CategorySuggestion],
    categories_by_id: Dict[str, NoReceiptCategory],
) -> str:
    """Store suggestions and auto-apply the top one. Returns "auto", "suggested" or "none"."""
    transaction.category_suggestions = [s.to_dict() for s in suggestions]
    if not suggestions:
        return "none"

    top = suggestions[0]
    if not should_auto_apply_category(top.confidence):
        return "suggested"

    transaction.no_receipt_category_id = top.category_id
    transaction.category_match_confidence = top.confidence
    transaction.category_matched_by = MatchedBy.AUTO
    category = categories_by_id[top.category_id]
    category.transaction_count = (category.transaction_count or 0) + 1
    return "auto"


def _select_transactions(db: Session, user_id: str, transaction_ids: Optional[List[str]], match_all: bool):
    base = db.query(Transaction).filter(
        Transaction.user_id == user_id,
        Transaction.no_receipt_category_id.is_(None),
    )
    if transaction_ids is not None and not match_all:
        if not transaction_ids:
            return
        yield base.filter(Transaction.id.in_(transaction_ids)).all()
    else:
        yield from iter_transaction_pages(base, settings.store_batch_size, settings.pattern_application_cap)


def match_categories(
    db: Session,
    user_id: str,
    transaction_ids: Optional[List[str]] = None,
    match_all: bool = False,
) -> Dict[str, int]:
    """
    Match eligible transactions (no category, no receipt) against the user's
    no-receipt categories. Commits per page.

    Returns:
        {"processed": n, "auto_matched": n, "with_suggestions": n}
    """
    if transaction_ids is not None and not isinstance(transaction_ids, list):
        raise InputValidationError("transaction_ids must be a list of ids")

    context = load_category_context(db, user_id)
    stats = {"processed": 0, "auto_matched": 0, "with_suggestions": 0}
    if not context.categories:
        logger.debug("category_matching_skipped", user_id=user_id, reason="no_categories")
        return stats

    categories_by_id = {c.id: c for c in context.categories}
    for page in _select_transactions(db, user_id, transaction_ids, match_all):
        for transaction in page:
            if not is_eligible(transaction):
                continue
            suggestions = match_transaction_to_categories(
                transaction, context.categories, context.removals, context.partners_without_files,
            )
            outcome = apply_category_suggestions(transaction, suggestions, categories_by_id)
            stats["processed"] += 1
            if outcome == "auto":
                stats["auto_matched"] += 1
            elif outcome == "suggested":
                stats["with_suggestions"] += 1
        db.commit()

    logger.info("category_matching_completed", user_id=user_id, **stats)
    return stats


def on_transaction_partner_changed(db: Session, transaction: Transaction) -> Dict[str, int]:
    """Partner linkage is a category signal, so a new partner means a new run."""
    if not is_eligible(transaction):
        return {"processed": 0, "auto_matched": 0, "with_suggestions": 0}
    return match_categories(db, transaction.user_id, transaction_ids=[transaction.id])
