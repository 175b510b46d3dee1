"""
File <-> Transaction Scoring

Weighted-sum confidence that a receipt belongs to a bank transaction:

    amount     0-40  exact / <=1% / <=5% / <=10%, halved on currency mismatch
    date       0-25  same day / <=3 / <=7 / <=14 / <=30 days (up to 37 boosted)
    partner    0-25  same partner id, else extracted name vs transaction text
    iban       0-10  extracted IBAN equals the transaction counterparty IBAN
    reference  0-5   transaction reference inside the receipt text (+10 date bonus)
    hint       25-40 targeted receipt search pointed at this transaction

Capped at 100. Auto-connect at 85, suggest at 50: these signals are weaker
than partner identifiers, so the lines sit below the partner threshold.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.services.matching.normalizer import normalize_iban, unassigned

NAME_SUFFIXES = re.compile(r"\s*\b(gmbh|ag|kg|ohg|ug|e\.?k\.?|inc\.?|ltd\.?|llc|co\.?)(?=\s|$)")


@dataclass
class FileMatchingData:
    """Receipt fields relevant for transaction scoring."""
    extracted_amount: Optional[int] = None
    extracted_currency: Optional[str] = None
    extracted_date: Optional[datetime] = None
    extracted_partner: Optional[str] = None
    extracted_iban: Optional[str] = None
    extracted_text: Optional[str] = None
    partner_id: Optional[str] = None
    precision_hint: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: Any) -> "FileMatchingData":
        return cls(
            extracted_amount=getattr(row, "extracted_amount", None),
            extracted_currency=unassigned(getattr(row, "extracted_currency", None)),
            extracted_date=getattr(row, "extracted_date", None),
            extracted_partner=unassigned(getattr(row, "extracted_partner", None)),
            extracted_iban=unassigned(getattr(row, "extracted_iban", None)),
            extracted_text=unassigned(getattr(row, "extracted_text", None)),
            partner_id=unassigned(getattr(row, "partner_id", None)),
            precision_hint=getattr(row, "precision_hint", None),
        )


@dataclass
class TransactionMatchScore:
    transaction_id: str
    confidence: int
    match_sources: List[str] = field(default_factory=list)
    breakdown: Dict[str, int] = field(default_factory=dict)
    preview: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "confidence": self.confidence,
            "match_sources": self.match_sources,
            "breakdown": self.breakdown,
            "preview": self.preview,
        }


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_name(name: str) -> str:
    lowered = NAME_SUFFIXES.sub(" ", name.lower())
    return re.sub(r"\s+", " ", lowered).strip()


def names_match(name1: str, name2: str) -> int:
    """
    Partner text score: 25 exact, 18 containment, 15 for two shared words,
    12 for one shared word when either side is short, else 0.
    """
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 25
    if n1 in n2 or n2 in n1:
        return 18

    words1 = [w for w in n1.split(" ") if len(w) > 2]
    words2 = [w for w in n2.split(" ") if len(w) > 2]
    shared = [w for w in words1 if any(w == w2 or w in w2 or w2 in w for w2 in words2)]

    if len(shared) >= 2:
        return 15
    if shared and (len(words1) <= 2 or len(words2) <= 2):
        return 12
    return 0


def amount_score(
    file_amount: int,
    tx_amount: int,
    file_currency: Optional[str] = None,
    tx_currency: Optional[str] = None
) -> tuple:
    """Returns (score, source)."""
    abs_file = abs(file_amount)
    abs_tx = abs(tx_amount)
    if abs_file == 0 or abs_tx == 0:
        return 0, None

    if abs_file == abs_tx:
        score, source = 40, "amount_exact"
    else:
        difference = abs(abs_file - abs_tx)
        if difference <= abs_file * 0.01:
            score, source = 38, "amount_close"
        elif difference <= abs_file * 0.05:
            score, source = 30, "amount_close"
        elif difference <= abs_file * 0.1:
            score, source = 20, "amount_close"
        else:
            return 0, None

    if (file_currency or "EUR").upper() != (tx_currency or "EUR").upper():
        score = round(score * 0.5)
    return score, source


def date_score(file_date: datetime, tx_date: datetime) -> tuple:
    days = abs((as_naive_utc(file_date) - as_naive_utc(tx_date)).days)
    if days == 0:
        return 25, "date_exact"
    if days <= 3:
        return 22, "date_close"
    if days <= 7:
        return 15, "date_close"
    if days <= 14:
        return 8, "date_close"
    if days <= 30:
        return 3, "date_close"
    return 0, None


def partner_score(file_data: FileMatchingData, transaction: Any, partner_aliases: Optional[List[str]] = None) -> int:
    """Partner id match 25, else best of extracted name / aliases vs transaction text."""
    if file_data.partner_id and file_data.partner_id == unassigned(getattr(transaction, "partner_id", None)):
        return 25

    tx_name = unassigned(transaction.name) or unassigned(transaction.partner)
    if not tx_name:
        return 0

    if file_data.extracted_partner:
        score = names_match(file_data.extracted_partner, tx_name)
        if score:
            return score

    for alias in partner_aliases or []:
        score = names_match(alias, tx_name)
        if score:
            return score
    return 0


def hint_score(hint: Optional[Dict[str, Any]], transaction_id: str) -> int:
    if not hint or hint.get("transaction_id") != transaction_id:
        return 0
    confidence = hint.get("match_confidence") or 0
    if confidence >= 50:
        return 40
    if confidence >= 25:
        return 30
    return 25


def score_transaction(
    file_data: FileMatchingData,
    transaction: Any,
    partner_aliases: Optional[List[str]] = None
) -> TransactionMatchScore:
    """
    Score one transaction (row or row-like object) against a receipt.

    Example:
        >>> score = score_transaction(file_data, tx)
        >>> score.confidence, score.match_sources
        (65, ['amount_exact', 'date_exact'])
    """
    sources: List[str] = []
    amount = date = partner = iban = reference = hint = 0

    if file_data.extracted_amount is not None and transaction.amount is not None:
        amount, source = amount_score(
            file_data.extracted_amount, transaction.amount,
            file_data.extracted_currency, transaction.currency,
        )
        if source:
            sources.append(source)

    if file_data.extracted_date is not None and transaction.date is not None:
        date, source = date_score(file_data.extracted_date, transaction.date)
        if source:
            sources.append(source)

    partner = partner_score(file_data, transaction, partner_aliases)
    if partner:
        sources.append("partner")

    # Partner and date corroborate each other; a far-off date discounts the partner
    if partner >= 15 and file_data.extracted_date is not None:
        if date >= 15:
            date = min(37, round(date * 1.5))
        elif date <= 3:
            partner = round(partner * 0.6)

    if file_data.extracted_iban and transaction.partner_iban:
        if normalize_iban(file_data.extracted_iban) == normalize_iban(transaction.partner_iban):
            iban = 10
            sources.append("iban")

    tx_reference = unassigned(transaction.reference)
    if file_data.extracted_text and tx_reference and len(tx_reference) >= 3:
        if tx_reference.lower() in file_data.extracted_text.lower():
            reference = 5
            if date < 15:
                date = min(25, date + 10)
            sources.append("reference")

    hint = hint_score(file_data.precision_hint, transaction.id)
    if hint:
        sources.append("precision_hint")

    breakdown = {
        "amount": amount,
        "date": date,
        "partner": partner,
        "iban": iban,
        "reference": reference,
        "hint": hint,
    }
    return TransactionMatchScore(
        transaction_id=transaction.id,
        confidence=min(100, sum(breakdown.values())),
        match_sources=sources,
        breakdown=breakdown,
        preview={
            "date": transaction.date.isoformat() if transaction.date else None,
            "amount": transaction.amount,
            "currency": transaction.currency or "EUR",
            "name": transaction.name or "",
            "partner": transaction.partner,
        },
    )


def format_breakdown(breakdown: Dict[str, int]) -> str:
    """"amount:40 + date:25" style summary for logs."""
    return " + ".join(f"{key}:{value}" for key, value in breakdown.items() if value > 0)
