"""
Text Normalizer

Canonical forms used by every matcher: case folding, German umlaut
transliteration, whitespace collapse, URL / IBAN / VAT id / email domain
normalization and company-name cleanup.

Design decisions:
- Banks transliterate umlauts (ä -> ae), so both sides are transliterated
  before any comparison
- RapidFuzz's default_process does punctuation stripping for company names,
  same preprocessing the similarity scorers rely on
- Missing key, explicit None and empty string are one "unassigned" state
"""

import re
from typing import Any, Iterable, List, Optional

from rapidfuzz import utils

UMLAUT_MAP = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "ß": "ss",
}

# Legal-form suffixes, stripped repeatedly from the end of a name
COMPANY_SUFFIXES = [
    re.compile(r"\s*\bgmbh\s*$"),
    re.compile(r"\s*\bg\.m\.b\.h\.\s*$"),
    re.compile(r"\s*\bges\.?m\.?b\.?h\.?\s*$"),
    re.compile(r"\s*&\s*co\.?\s*(kg|ohg)?\s*$"),
    re.compile(r"\s*\bag\s*$"),
    re.compile(r"\s*\bkg\s*$"),
    re.compile(r"\s*\bohg\s*$"),
    re.compile(r"\s*\bog\s*$"),
    re.compile(r"\s*\be\.?u\.?\s*$"),
    re.compile(r"\s*\bmbh\s*$"),
    re.compile(r"\s*\bltd\.?\s*$"),
    re.compile(r"\s*\blimited\s*$"),
    re.compile(r"\s*\binc\.?\s*$"),
    re.compile(r"\s*\bincorporated\s*$"),
    re.compile(r"\s*\bcorp\.?\s*$"),
    re.compile(r"\s*\bcorporation\s*$"),
    re.compile(r"\s*\bllc\s*$"),
    re.compile(r"\s*\bllp\s*$"),
    re.compile(r"\s*\bplc\s*$"),
    re.compile(r"\s*\bco\.?\s*$"),
    re.compile(r"\s*\bs\.?a\.?r\.?l\.?\s*$"),
    re.compile(r"\s*\bsarl\s*$"),
    re.compile(r"\s*\bsas\s*$"),
    re.compile(r"\s*\bs\.?r\.?l\.?\s*$"),
    re.compile(r"\s*\bs\.?p\.?a\.?\s*$"),
    re.compile(r"\s*\bs\.?a\.?\s*$"),
    re.compile(r"\s*\bs\.?l\.?\s*$"),
    re.compile(r"\s*\bb\.?v\.?\s*$"),
    re.compile(r"\s*\bn\.?v\.?\s*$"),
]

_WHITESPACE = re.compile(r"\s+")


def unassigned(value: Any) -> Any:
    """
    Collapse the three "no value" states to None.

    Upstream rows use a missing attribute, an explicit None and an empty
    string interchangeably; equality checks must see one sentinel.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def transliterate(text: str) -> str:
    """Lowercase and replace German umlauts with their two-letter forms."""
    lowered = text.lower()
    for umlaut, replacement in UMLAUT_MAP.items():
        lowered = lowered.replace(umlaut, replacement)
    return lowered


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize_text(text: Optional[str]) -> str:
    """Case-fold, transliterate and collapse whitespace."""
    if not text:
        return ""
    return collapse_whitespace(transliterate(text))


def join_fields(*fields: Optional[str]) -> str:
    """Join the non-empty fields with single spaces."""
    return " ".join(f for f in fields if f)


def normalize_url(url: Optional[str]) -> str:
    """
    Reduce a URL to host + path: no protocol, no www., no query,
    no fragment, no trailing slash.

    Example:
        >>> normalize_url("https://www.Amazon.de/?ref=x")
        'amazon.de'
    """
    if not url:
        return ""
    normalized = url.lower().strip()
    normalized = re.sub(r"^https?://", "", normalized)
    normalized = re.sub(r"^www\.", "", normalized)
    normalized = normalized.split("?")[0].split("#")[0]
    return normalized.rstrip("/")


def normalize_iban(iban: Optional[str]) -> str:
    if not iban:
        return ""
    return re.sub(r"\s+", "", iban).upper()


def normalize_vat_id(vat_id: Optional[str]) -> str:
    """Uppercase alphanumerics only ("ATU 123.456-78" -> "ATU12345678")."""
    if not vat_id:
        return ""
    return re.sub(r"[^A-Z0-9]", "", vat_id.upper())


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


def email_domain(email: Optional[str]) -> str:
    """Domain part of an address, or "" when there is none."""
    normalized = normalize_email(email)
    if "@" not in normalized:
        return ""
    return normalized.rsplit("@", 1)[1]


def normalize_domain(domain: Optional[str]) -> str:
    """Domain without protocol, www. prefix, path or leading @."""
    host = normalize_url(domain).split("/")[0]
    return host.lstrip("@")


def domains_match(domain_a: Optional[str], domain_b: Optional[str]) -> bool:
    """
    True for equal domains or when one is a subdomain of the other
    (mail.amazon.de ~ amazon.de).
    """
    a = normalize_domain(domain_a)
    b = normalize_domain(domain_b)
    if not a or not b:
        return False
    if a == b:
        return True
    return a.endswith("." + b) or b.endswith("." + a)


def normalize_company_name(name: Optional[str]) -> str:
    """
    Company name without legal form, punctuation or umlauts.

    Example:
        >>> normalize_company_name("Müller & Co. KG")
        'mueller'
    """
    if not name:
        return ""

    normalized = name.lower().strip()
    previous = None
    while previous != normalized:
        previous = normalized
        for suffix in COMPANY_SUFFIXES:
            normalized = suffix.sub("", normalized)

    # default_process: lowercase, non-alphanumerics -> space, trim
    normalized = utils.default_process(normalized)
    normalized = transliterate(normalized)
    return collapse_whitespace(normalized)


def unique(values: Iterable[str]) -> List[str]:
    """Order-preserving de-duplication of non-empty strings."""
    seen = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
