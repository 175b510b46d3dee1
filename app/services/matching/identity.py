"""
Own Identifiers

One "is this identifier mine" check for VAT ids, IBANs and email
addresses. Invoices and bank exports routinely contain the user's own
identifiers (recipient VAT id, own account, own mailbox); treating those as
partner evidence would match every document to whoever shares them.

All call sites use OwnIdentifiers so normalization is identical everywhere.
"""

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Optional

from app.services.matching.normalizer import (
    normalize_email,
    normalize_iban,
    normalize_vat_id,
)


def _normalized_set(values: Optional[Iterable[str]], normalize) -> FrozenSet[str]:
    return frozenset(v for v in (normalize(value) for value in (values or [])) if v)


@dataclass(frozen=True)
class OwnIdentifiers:
    vat_ids: FrozenSet[str] = field(default_factory=frozenset)
    ibans: FrozenSet[str] = field(default_factory=frozenset)
    emails: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        vat_ids: Optional[Iterable[str]] = None,
        ibans: Optional[Iterable[str]] = None,
        emails: Optional[Iterable[str]] = None,
    ) -> "OwnIdentifiers":
        return cls(
            vat_ids=_normalized_set(vat_ids, normalize_vat_id),
            ibans=_normalized_set(ibans, normalize_iban),
            emails=_normalized_set(emails, normalize_email),
        )

    @classmethod
    def from_profile(cls, profile: Any) -> "OwnIdentifiers":
        """Build from a UserProfile row (or None for a user without one)."""
        if profile is None:
            return cls()
        return cls.build(
            vat_ids=profile.vat_ids,
            ibans=profile.ibans,
            emails=profile.emails,
        )

    def is_mine(self, kind: str, value: Optional[str]) -> bool:
        """
        True when the identifier belongs to the user.

        Args:
            kind: "vat_id", "iban" or "email"
            value: Raw identifier as extracted or reported

        Email checks compare full addresses, not domains: a user with
        me@gmail.com must still be able to match other gmail.com senders.
        """
        if not value:
            return False
        if kind == "vat_id":
            return normalize_vat_id(value) in self.vat_ids
        if kind == "iban":
            return normalize_iban(value) in self.ibans
        if kind == "email":
            return normalize_email(value) in self.emails
        raise ValueError(f"Unknown identifier kind: {kind}")

