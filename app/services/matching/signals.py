"""
Signal Scorer Functions

Scores one partner against one transaction from independent signals and
keeps the best:

- iban: exact bank account match, 100, short-circuits everything else
- pattern: learned (user) or static (global) glob pattern, the pattern's
  own confidence without adjustment
- website: partner's normalized domain inside the transaction text, 90
- name: fuzzy similarity of partner name / aliases, 60-90 band
  (60-85 when only the noisier name field is available)

Design decisions:
- Similarity is character-trigram Jaccard with a containment boost, so
  "AMAZON" inside "AMAZON EU" scores above a partial overlap
- Name and alias both matching is the only way a name signal exceeds 90
- Every function is pure; nothing here touches the database
"""

from typing import List, Optional, Set

import structlog

from app.services.matching import glob
from app.services.matching.normalizer import (
    join_fields,
    normalize_company_name,
    normalize_iban,
    normalize_text,
    normalize_url,
)
from app.services.matching.records import MatchRecord, PartnerMatch, PartnerProfile, PatternRule

logger = structlog.get_logger(__name__)

IBAN_CONFIDENCE = 100
WEBSITE_CONFIDENCE = 90

# Counterparty field: similarity >= 60 maps linearly onto 60..90
PARTNER_FIELD_FLOOR = 60
PARTNER_FIELD_BAND = (60, 90)
# Free-text name field only: stricter floor, narrower band
NAME_FIELD_FLOOR = 70
NAME_FIELD_BAND = (60, 85)

CONTAINMENT_SIMILARITY = 95
MIN_CONTAINED_NAME_LENGTH = 3
NAME_AND_ALIAS_BOOST = (92, 95)


def trigrams(text: str) -> Set[str]:
    """Character trigrams of each word, padded like pg_trgm ("  ab ")."""
    grams = set()
    for word in text.split():
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard index of the two trigram sets, 0.0-1.0."""
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)


def company_name_similarity(name1: Optional[str], name2: Optional[str]) -> int:
    """
    Similarity of two company names, 0-100.

    Identical normalized names score 100; full containment of one in the
    other scores 75-100 by coverage; otherwise the trigram Jaccard index.

    Example:
        >>> company_name_similarity("Amazon EU S.a.r.l.", "AMAZON")
        100
    """
    n1 = normalize_company_name(name1)
    n2 = normalize_company_name(name2)
    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 100

    if n1 in n2 or n2 in n1:
        shorter, longer = sorted((n1, n2), key=len)
        coverage = len(shorter) / len(longer)
        return round(75 + coverage * 25)

    return round(trigram_similarity(n1, n2) * 100)


def scale_to_band(similarity: float, floor: int, band: tuple) -> float:
    """Map similarity in [floor, 100] linearly onto band (low, high)."""
    low, high = band
    scaled = low + (similarity - floor) * (high - low) / (100 - floor)
    return max(low, min(high, scaled))


def score_iban(record: MatchRecord, partner: PartnerProfile) -> Optional[float]:
    if not record.partner_iban or not partner.ibans:
        return None
    tx_iban = normalize_iban(record.partner_iban)
    for iban in partner.ibans:
        if normalize_iban(iban) == tx_iban:
            return IBAN_CONFIDENCE
    return None


def is_excluded(rule: PatternRule, record: MatchRecord) -> bool:
    combined = record.combined_text
    return bool(combined) and any(glob.match(excl, combined) for excl in rule.exclude)


def score_patterns(record: MatchRecord, patterns: List[PatternRule]) -> Optional[float]:
    """Highest confidence among matching, non-excluded patterns."""
    best = None
    for rule in patterns:
        if not glob.match_flexible(rule.pattern, record.name, record.partner, record.reference):
            continue
        if is_excluded(rule, record):
            continue
        if best is None or rule.confidence > best:
            best = rule.confidence
    return best


def score_website(record: MatchRecord, partner: PartnerProfile) -> Optional[float]:
    website = normalize_url(partner.website)
    if not website:
        return None
    text = join_fields(record.name, record.partner).lower()
    if website in text:
        return WEBSITE_CONFIDENCE
    return None


def score_name(record: MatchRecord, partner: PartnerProfile) -> Optional[float]:
    """
    Name / alias similarity mapped onto the confidence band.

    Returns None when no name clears its floor.
    """
    combined = normalize_text(record.combined_text)
    names = [partner.name] + list(partner.aliases)

    matched = []  # (confidence, similarity, is_alias)
    for index, name in enumerate(names):
        normalized = normalize_company_name(name)
        if not normalized:
            continue
        is_alias = index > 0

        if len(normalized) >= MIN_CONTAINED_NAME_LENGTH and normalized in combined:
            similarity = CONTAINMENT_SIMILARITY
            confidence = scale_to_band(similarity, PARTNER_FIELD_FLOOR, PARTNER_FIELD_BAND)
        elif record.partner:
            similarity = company_name_similarity(record.partner, name)
            if similarity < PARTNER_FIELD_FLOOR:
                continue
            confidence = scale_to_band(similarity, PARTNER_FIELD_FLOOR, PARTNER_FIELD_BAND)
        elif record.name:
            similarity = company_name_similarity(record.name, name)
            if similarity < NAME_FIELD_FLOOR:
                continue
            confidence = scale_to_band(similarity, NAME_FIELD_FLOOR, NAME_FIELD_BAND)
        else:
            continue

        matched.append((confidence, similarity, is_alias))

    if not matched:
        return None

    has_name = any(not is_alias for _, _, is_alias in matched)
    has_alias = any(is_alias for _, _, is_alias in matched)
    if has_name and has_alias:
        best_similarity = max(similarity for _, similarity, _ in matched)
        low, high = NAME_AND_ALIAS_BOOST
        return round(min(high, low + (best_similarity - PARTNER_FIELD_FLOOR) * 0.075))

    return round(max(confidence for confidence, _, _ in matched))


def score_partner(record: MatchRecord, partner: PartnerProfile) -> Optional[PartnerMatch]:
    """
    Best signal for this (record, partner) pair, or None if nothing matched.

    Signals are evaluated in a fixed order; on equal confidence the earlier
    signal keeps its source tag.
    """
    def result(confidence: float, source: str) -> PartnerMatch:
        return PartnerMatch(
            partner_id=partner.id,
            partner_type=partner.partner_type,
            partner_name=partner.name,
            confidence=confidence,
            source=source,
        )

    if score_iban(record, partner) is not None:
        return result(IBAN_CONFIDENCE, "iban")

    candidates = [
        ("pattern", score_patterns(record, partner.patterns)),
        ("website", score_website(record, partner)),
        ("name", score_name(record, partner)),
    ]

    best = None
    for source, confidence in candidates:
        if confidence is None:
            continue
        if best is None or confidence > best.confidence:
            best = result(confidence, source)
    return best
