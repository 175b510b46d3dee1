"""
File -> Partner Matching

Assigns a partner to an extracted receipt. Signals are checked strongest
first and the first identifier hit wins:

    iban 100 > vat_id 95 > sender email domain 90 > sender domain vs website 90
    > extracted website 92 (75 when the name disagrees) > glob alias 90
    > name similarity 60-90

The user's own VAT id, IBAN and mailbox appear on most of their invoices and
are never used as partner evidence.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from app.models.receipt_file import ReceiptFile
from app.models.transaction import MatchedBy
from app.models.user_profile import UserProfile
from app.services.matching import glob
from app.services.matching.identity import OwnIdentifiers
from app.services.matching.normalizer import (
    domains_match,
    email_domain,
    normalize_iban,
    normalize_vat_id,
    unassigned,
)
from app.services.matching.records import PartnerMatch, PartnerProfile
from app.services.matching.signals import (
    PARTNER_FIELD_BAND,
    PARTNER_FIELD_FLOOR,
    company_name_similarity,
    scale_to_band,
)
from app.services.matching.thresholds import PartnerThresholds
from app.services.partner_matcher import (
    PartnerCandidates,
    load_partner_candidates,
    rank_matches,
    should_auto_apply,
)

logger = structlog.get_logger(__name__)

WEBSITE_NAME_AGREEMENT = 50


@dataclass
class FileEvidence:
    """Extracted receipt fields with the user's own identifiers removed."""
    extracted_partner: Optional[str] = None
    vat_id: Optional[str] = None
    iban: Optional[str] = None
    website: Optional[str] = None
    sender_domain: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any, own: OwnIdentifiers) -> "FileEvidence":
        vat_id = unassigned(getattr(row, "extracted_vat_id", None))
        iban = unassigned(getattr(row, "extracted_iban", None))
        sender = unassigned(getattr(row, "sender_email", None))
        return cls(
            extracted_partner=unassigned(getattr(row, "extracted_partner", None)),
            vat_id=None if own.is_mine("vat_id", vat_id) else vat_id,
            iban=None if own.is_mine("iban", iban) else iban,
            website=unassigned(getattr(row, "extracted_website", None)),
            sender_domain=None if own.is_mine("email", sender) else (email_domain(sender) or None),
        )


def _plain_names(partner: PartnerProfile) -> List[str]:
    return [partner.name] + [a for a in partner.aliases if "*" not in a]


def _best_name_similarity(extracted: str, partner: PartnerProfile) -> int:
    return max((company_name_similarity(extracted, name) for name in _plain_names(partner)), default=0)


def score_file_partner(evidence: FileEvidence, partner: PartnerProfile) -> Optional[PartnerMatch]:
    """Best signal for one receipt against one partner, or None."""
    def result(confidence: float, source: str) -> PartnerMatch:
        return PartnerMatch(partner.id, partner.partner_type, partner.name, round(confidence), source)

    if evidence.iban:
        file_iban = normalize_iban(evidence.iban)
        if any(normalize_iban(i) == file_iban for i in partner.ibans):
            return result(100, "iban")

    if evidence.vat_id and partner.vat_id:
        if normalize_vat_id(evidence.vat_id) == normalize_vat_id(partner.vat_id):
            return result(95, "vat_id")

    if evidence.sender_domain:
        if any(domains_match(evidence.sender_domain, d) for d in partner.email_domains):
            return result(90, "email_domain")
        if partner.website and domains_match(evidence.sender_domain, partner.website):
            return result(90, "website")

    if evidence.website and partner.website and domains_match(evidence.website, partner.website):
        similarity = _best_name_similarity(evidence.extracted_partner, partner) if evidence.extracted_partner else 0
        return result(92 if similarity >= WEBSITE_NAME_AGREEMENT else 75, "website")

    if not evidence.extracted_partner:
        return None

    for alias in partner.aliases:
        if "*" in alias and glob.match(alias, evidence.extracted_partner):
            return result(90, "name")

    similarity = _best_name_similarity(evidence.extracted_partner, partner)
    if similarity >= PARTNER_FIELD_FLOOR:
        return result(scale_to_band(similarity, PARTNER_FIELD_FLOOR, PARTNER_FIELD_BAND), "name")
    return None


def match_file_to_partners(
    evidence: FileEvidence,
    user_partners: List[PartnerProfile],
    global_partners: List[PartnerProfile],
) -> List[PartnerMatch]:
    """Ranked matches (at most three), one per partner."""
    matches = []
    seen = set()
    for partner in list(user_partners) + list(global_partners):
        if partner.id in seen:
            continue
        match = score_file_partner(evidence, partner)
        if match is not None:
            seen.add(partner.id)
            matches.append(match)
    return rank_matches(matches)[:PartnerThresholds.MAX_SUGGESTIONS]


def load_own_identifiers(db: Session, user_id: str) -> OwnIdentifiers:
    return OwnIdentifiers.from_profile(db.get(UserProfile, user_id))


def match_file_partner(
    db: Session,
    receipt: ReceiptFile,
    candidates: Optional[PartnerCandidates] = None,
    own: Optional[OwnIdentifiers] = None,
) -> Dict[str, Any]:
    """
    Refresh partner suggestions for a receipt and auto-assign >= 89.

    A partner the user set on the receipt is never replaced. Caller commits.
    Batch callers pass candidates and own identifiers loaded once.
    """
    if own is None:
        own = load_own_identifiers(db, receipt.user_id)
    if candidates is None:
        candidates = load_partner_candidates(db, receipt.user_id)
    evidence = FileEvidence.from_row(receipt, own)

    matches = match_file_to_partners(evidence, candidates.user_partners, candidates.global_partners)
    receipt.partner_suggestions = [m.to_suggestion() for m in matches]

    assigned = False
    user_set = receipt.partner_matched_by in (MatchedBy.MANUAL, MatchedBy.SUGGESTION)
    if matches and should_auto_apply(matches[0].confidence) and not user_set:
        top = matches[0]
        receipt.partner_id = top.partner_id
        receipt.partner_type = top.partner_type
        receipt.partner_match_confidence = top.confidence
        receipt.partner_matched_by = MatchedBy.AUTO
        assigned = True

    logger.info(
        "file_partner_matched",
        file_id=receipt.id,
        suggestions=len(matches),
        assigned=assigned,
        top_source=matches[0].source if matches else None,
    )
    return {"suggestions": len(matches), "assigned": assigned}


def rematch_unassigned_files(db: Session, user_id: str, limit: int = 500) -> Dict[str, int]:
    """Re-run partner matching for receipts without a partner. Commits once."""
    receipts = db.query(ReceiptFile).filter(
        ReceiptFile.user_id == user_id,
        ReceiptFile.extraction_complete.is_(True),
        ReceiptFile.partner_id.is_(None),
    ).limit(limit).all()

    candidates = load_partner_candidates(db, user_id)
    own = load_own_identifiers(db, user_id)
    assigned = 0
    for receipt in receipts:
        if match_file_partner(db, receipt, candidates, own)["assigned"]:
            assigned += 1
    db.commit()

    logger.info("unassigned_files_rematched", user_id=user_id, processed=len(receipts), assigned=assigned)
    return {"processed": len(receipts), "assigned": assigned}
