"""
Matching Records

Plain dataclasses the scorers work on. ORM rows (or any object with the
same attribute names) are converted at the boundary via from_row(), so the
matching logic itself is a pure function of (record, rule set) and can be
tested without a database.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.services.matching.normalizer import join_fields, unassigned

PARTNER_TYPE_USER = "user"
PARTNER_TYPE_GLOBAL = "global"


@dataclass
class PatternRule:
    """A glob pattern with its confidence (learned or static)."""
    pattern: str
    confidence: float
    exclude: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["PatternRule"]:
        pattern = data.get("pattern")
        confidence = data.get("confidence")
        if not isinstance(pattern, str) or not pattern.strip():
            return None
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            return None
        return cls(
            pattern=pattern,
            confidence=float(confidence),
            exclude=[e for e in (data.get("exclude") or []) if isinstance(e, str)],
        )


def pattern_rules(entries: Optional[List[Dict[str, Any]]]) -> List[PatternRule]:
    """Parse stored pattern dicts, skipping malformed entries."""
    rules = []
    for entry in entries or []:
        if isinstance(entry, dict):
            rule = PatternRule.from_dict(entry)
            if rule is not None:
                rules.append(rule)
    return rules


@dataclass
class MatchRecord:
    """Transaction text and identifiers as seen by the scorers."""
    id: str
    name: Optional[str] = None
    partner: Optional[str] = None
    reference: Optional[str] = None
    partner_iban: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "MatchRecord":
        return cls(
            id=str(row.id),
            name=unassigned(getattr(row, "name", None)),
            partner=unassigned(getattr(row, "partner", None)),
            reference=unassigned(getattr(row, "reference", None)),
            partner_iban=unassigned(getattr(row, "partner_iban", None)),
        )

    @property
    def combined_text(self) -> str:
        """name + partner + reference, the text patterns are applied to in bulk."""
        return join_fields(self.name, self.partner, self.reference)


@dataclass
class PartnerProfile:
    """Matching keys of a user or global partner."""
    id: str
    partner_type: str
    name: str
    aliases: List[str] = field(default_factory=list)
    ibans: List[str] = field(default_factory=list)
    website: Optional[str] = None
    vat_id: Optional[str] = None
    email_domains: List[str] = field(default_factory=list)
    patterns: List[PatternRule] = field(default_factory=list)
    global_partner_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any, partner_type: str) -> "PartnerProfile":
        # User partners carry learned patterns, global partners static ones
        stored = getattr(row, "learned_patterns", None) or []
        static = getattr(row, "patterns", None) or []
        return cls(
            id=str(row.id),
            partner_type=partner_type,
            name=row.name or "",
            aliases=[a for a in (getattr(row, "aliases", None) or []) if a],
            ibans=[i for i in (getattr(row, "ibans", None) or []) if i],
            website=unassigned(getattr(row, "website", None)),
            vat_id=unassigned(getattr(row, "vat_id", None)),
            email_domains=[d for d in (getattr(row, "email_domains", None) or []) if d],
            patterns=pattern_rules(stored) + pattern_rules(static),
            global_partner_id=unassigned(getattr(row, "global_partner_id", None)),
        )


@dataclass
class PartnerMatch:
    """Best signal for one partner against one record."""
    partner_id: str
    partner_type: str
    partner_name: str
    confidence: float
    source: str  # iban, vat_id, pattern, website, email_domain, name

    def to_suggestion(self, source: Optional[str] = None) -> Dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "partner_type": self.partner_type,
            "confidence": self.confidence,
            "source": source or self.source,
        }
