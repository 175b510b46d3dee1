"""
Pattern Safety Filter

Deterministic checks every oracle-proposed pattern must pass before it is
dry-run, verified or stored:

1. Well-formed: non-empty string, numeric confidence >= 50
2. Does not match a manually removed record of this partner
3. Does not match a record assigned to another partner
4. Not built purely from generic banking vocabulary ("*rechnung*")

Patterns that combine a generic word with a specific token
("*amazon*rechnung*") pass and are left to dry-run verification.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from app.services.matching import glob
from app.services.matching.thresholds import LearningLimits

logger = structlog.get_logger(__name__)

GENERIC_BANKING_TERMS = (
    "rechnung",      # invoice
    "rechner",
    "rechn",
    "ueberweisung",  # bank transfer
    "überweisung",
    "lastschrift",   # direct debit
    "gutschrift",    # credit
    "zahlung",       # payment
    "bezahlung",
    "abbuchung",     # debit
    "einzahlung",    # deposit
    "auszahlung",    # withdrawal
    "konto",
    "sepa",
    "mandat",
    "referenz",
    "verwendung",    # purpose
    "betrag",        # amount
    "iban",
    "bic",
    "nr",            # as in "Rechn.Nr."
)

_TOKEN_SPLIT = re.compile(r"[^a-zäöüß]+")


@dataclass
class PatternCandidate:
    """A normalized pattern proposal."""
    pattern: str
    confidence: int
    reasoning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": self.pattern, "confidence": self.confidence}


@dataclass
class SafetyReport:
    accepted: List[PatternCandidate] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)  # (pattern, reason)


def clamp_confidence(value: float) -> int:
    return min(100, max(0, round(value)))


def pattern_tokens(pattern: str) -> List[str]:
    """Meaningful words of a pattern: wildcards stripped, single letters dropped."""
    stripped = pattern.lower().replace("*", "")
    return [part for part in _TOKEN_SPLIT.split(stripped) if len(part) >= 2]


def _is_generic_token(token: str) -> bool:
    # Short terms (nr, bic, iban) only count as whole words: "bicycle" is specific
    return any(
        token == term or term.startswith(token) or (len(term) >= 5 and token.startswith(term))
        for term in GENERIC_BANKING_TERMS
    )


def is_generic_pattern(pattern: str) -> bool:
    """
    True when every token of the pattern is banking boilerplate.

    Example:
        >>> is_generic_pattern("*rechnung*")
        True
        >>> is_generic_pattern("*amazon*rechnung*")
        False
    """
    tokens = pattern_tokens(pattern)
    return bool(tokens) and all(_is_generic_token(t) for t in tokens)


def normalize_candidate(raw: Any) -> Optional[PatternCandidate]:
    """Lowercase/strip the pattern and clamp confidence; None when malformed or weak."""
    if not isinstance(raw, dict):
        return None
    pattern = raw.get("pattern")
    confidence = raw.get("confidence")
    if not isinstance(pattern, str) or not pattern.strip():
        return None
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
        return None
    if confidence < LearningLimits.MIN_CANDIDATE_CONFIDENCE:
        return None
    reasoning = raw.get("reasoning")
    return PatternCandidate(
        pattern=pattern.lower().strip(),
        confidence=clamp_confidence(confidence),
        reasoning=reasoning if isinstance(reasoning, str) else None,
    )


def first_matching_record(pattern: str, records: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First record the pattern matches on any field combination."""
    for record in records:
        if glob.match_flexible(pattern, record.get("name"), record.get("partner"), record.get("reference")):
            return record
    return None


def filter_candidates(
    raw_candidates: Iterable[Any],
    removals: Optional[List[Dict[str, Any]]] = None,
    collisions: Optional[List[Dict[str, Any]]] = None,
) -> SafetyReport:
    """
    Run every check over the oracle's proposals.

    Args:
        raw_candidates: Pattern dicts as returned by the oracle
        removals: Manual removal records of this partner ({name, partner})
        collisions: Records assigned to other partners ({name, partner})

    Returns:
        SafetyReport with accepted candidates (deduplicated) and rejections
    """
    report = SafetyReport()
    seen = set()

    for raw in raw_candidates:
        candidate = normalize_candidate(raw)
        if candidate is None:
            label = raw.get("pattern") if isinstance(raw, dict) else raw
            report.rejected.append((str(label), "malformed or confidence below minimum"))
            continue
        if candidate.pattern in seen:
            continue

        removed = first_matching_record(candidate.pattern, removals or [])
        if removed is not None:
            reason = f"matches removed record: {removed.get('partner') or removed.get('name')}"
            report.rejected.append((candidate.pattern, reason))
            logger.info("pattern_rejected_false_positive", pattern=candidate.pattern, record=removed.get("transaction_id"))
            continue

        collision = first_matching_record(candidate.pattern, collisions or [])
        if collision is not None:
            reason = f"matches record of {collision.get('assigned_partner_name') or 'another partner'}"
            report.rejected.append((candidate.pattern, reason))
            logger.info("pattern_rejected_collision", pattern=candidate.pattern, other_partner=collision.get("assigned_partner_id"))
            continue

        if is_generic_pattern(candidate.pattern):
            report.rejected.append((candidate.pattern, "generic banking terms only"))
            logger.info("pattern_rejected_generic", pattern=candidate.pattern, tokens=pattern_tokens(candidate.pattern))
            continue

        seen.add(candidate.pattern)
        report.accepted.append(candidate)

    return report
