"""
Dry-Run Verification

Runs each safe candidate against the user's whole transaction corpus to
measure its real blast radius, then lets the oracle approve, reject or
re-score every pattern with that evidence in front of it.

Omitted patterns are approved, explicit rejections are final, and an
unusable verification reply approves everything that passed the safety
filter.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from app.config import settings
from app.models.transaction import Transaction
from app.services.matching import glob
from app.services.matching.thresholds import LearningLimits
from app.services.pagination import iter_transaction_pages
from app.services.pattern_learning.oracle import CompletionOracle, verify_patterns
from app.services.pattern_learning.prompts import build_verification_prompt
from app.services.pattern_learning.safety import PatternCandidate, clamp_confidence

logger = structlog.get_logger(__name__)


@dataclass
class DryRunMatch:
    id: str
    name: str
    partner: Optional[str]
    is_assigned_to_other: bool
    other_partner_name: Optional[str] = None


@dataclass
class DryRunResult:
    """What one pattern would match across the corpus."""
    pattern: str
    matches: List[DryRunMatch] = field(default_factory=list)

    @property
    def unassigned(self) -> List[DryRunMatch]:
        return [m for m in self.matches if not m.is_assigned_to_other]

    @property
    def conflicts(self) -> List[DryRunMatch]:
        return [m for m in self.matches if m.is_assigned_to_other]

    def match_percent(self, total: int) -> Optional[float]:
        if not total:
            return None
        return len(self.matches) / total * 100

    def is_broad(self, total: int) -> bool:
        percent = self.match_percent(total)
        return (
            len(self.matches) > LearningLimits.BROAD_MATCH_COUNT
            or (percent is not None and percent > LearningLimits.BROAD_MATCH_PERCENT)
        )


def dry_run_records(
    records: Iterable[Any],
    partner_id: str,
    candidates: List[PatternCandidate],
    partner_names: Dict[str, str],
    results: Optional[Dict[str, DryRunResult]] = None,
) -> Dict[str, DryRunResult]:
    """
    Classify every record each candidate matches (flexible field matching).

    Pass results back in to accumulate over several pages.
    """
    if results is None:
        results = {c.pattern: DryRunResult(c.pattern) for c in candidates}

    for record in records:
        for candidate in candidates:
            if not glob.match_flexible(candidate.pattern, record.name, record.partner, record.reference):
                continue
            other = record.partner_id is not None and record.partner_id != partner_id
            results[candidate.pattern].matches.append(DryRunMatch(
                id=record.id,
                name=record.name or "",
                partner=record.partner,
                is_assigned_to_other=other,
                other_partner_name=partner_names.get(record.partner_id, "Unknown") if other else None,
            ))
    return results


def dry_run_patterns(
    db: Session,
    user_id: str,
    partner_id: str,
    candidates: List[PatternCandidate],
    partner_names: Dict[str, str],
) -> Tuple[Dict[str, DryRunResult], int]:
    """
    Dry-run candidates against all of the user's transactions, page by page.

    Returns:
        (results by pattern, number of transactions scanned)
    """
    results = {c.pattern: DryRunResult(c.pattern) for c in candidates}
    total = 0
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    for page in iter_transaction_pages(query, settings.store_batch_size, settings.pattern_application_cap):
        dry_run_records(page, partner_id, candidates, partner_names, results)
        total += len(page)

    for pattern, result in results.items():
        logger.info(
            "pattern_dry_run",
            partner_id=partner_id,
            pattern=pattern,
            matches=len(result.matches),
            conflicts=len(result.conflicts),
            broad=result.is_broad(total),
        )
    return results, total


def verification_sections(
    candidates: List[PatternCandidate],
    results: Dict[str, DryRunResult],
    total: int,
) -> List[Dict[str, Any]]:
    """Template data for the verification prompt, samples capped."""
    sections = []
    for candidate in candidates:
        result = results.get(candidate.pattern) or DryRunResult(candidate.pattern)
        unassigned = result.unassigned
        conflicts = result.conflicts
        sections.append({
            "pattern": candidate.pattern,
            "confidence": candidate.confidence,
            "match_count": len(result.matches),
            "match_percent": result.match_percent(total),
            "is_broad": result.is_broad(total),
            "unassigned": unassigned[:LearningLimits.VERIFY_UNASSIGNED_SAMPLE],
            "unassigned_more": max(0, len(unassigned) - LearningLimits.VERIFY_UNASSIGNED_SAMPLE),
            "conflicts": conflicts[:LearningLimits.VERIFY_CONFLICT_SAMPLE],
            "conflicts_more": max(0, len(conflicts) - LearningLimits.VERIFY_CONFLICT_SAMPLE),
        })
    return sections


def apply_verification(candidates: List[PatternCandidate], decisions: List[Any]) -> List[PatternCandidate]:
    """Drop rejected patterns and apply adjusted confidences; unmentioned ones pass."""
    by_pattern = {}
    for decision in decisions:
        by_pattern.setdefault(decision.pattern.lower().strip(), decision)

    verified = []
    for candidate in candidates:
        decision = by_pattern.get(candidate.pattern)
        if decision is None:
            verified.append(candidate)
            continue
        if not decision.approved:
            logger.info("pattern_rejected_verification", pattern=candidate.pattern, reason=decision.reason)
            continue
        confidence = candidate.confidence
        if decision.adjusted_confidence is not None:
            confidence = clamp_confidence(decision.adjusted_confidence)
        verified.append(PatternCandidate(candidate.pattern, confidence, candidate.reasoning))
    return verified


def verify_candidates(
    oracle: CompletionOracle,
    partner_name: str,
    candidates: List[PatternCandidate],
    results: Dict[str, DryRunResult],
    total: int,
) -> List[PatternCandidate]:
    """Second oracle round; fails open to the safety-filtered candidates."""
    if not candidates:
        return []

    prompt = build_verification_prompt(partner_name, verification_sections(candidates, results, total), total)
    outcome = verify_patterns(oracle, prompt)
    if not outcome.ok:
        logger.warning("verification_skipped", reason=outcome.error.reason, candidates=len(candidates))
        return list(candidates)

    verified = apply_verification(candidates, outcome.items)
    logger.info("patterns_verified", candidates=len(candidates), approved=len(verified))
    return verified
