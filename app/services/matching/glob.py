"""
Glob Matcher

Restricted wildcard language for learned patterns: `*` matches any run of
characters (including none and including spaces), everything else is literal.
Matching is anchored to the whole normalized text.

Design decisions:
- Pattern and text are both transliterated, so "häusler*" ~ "HAEUSLER GMBH"
- A `*` inside the text is an ordinary character ("PP*NETFLIX.COM")
- Failures never raise: a malformed or oversized pattern fails closed and
  is logged, so one bad pattern cannot abort a batch
- Compiled patterns are cached; the same few patterns run over whole corpora
"""

import re
from functools import lru_cache
from typing import List, Optional

import structlog

from app.services.matching.normalizer import join_fields, transliterate, unique

logger = structlog.get_logger(__name__)

# Longer patterns are never produced by the oracle and only cost backtracking
MAX_PATTERN_LENGTH = 200
MAX_WILDCARDS = 12


@lru_cache(maxsize=2048)
def compile_pattern(pattern: str) -> Optional["re.Pattern[str]"]:
    """
    Compile a glob pattern to an anchored regex, or None if unusable.

    Runs of consecutive `*` collapse to one wildcard; this keeps the
    regex linear for patterns like "**amazon**".
    """
    normalized = transliterate(pattern.strip())
    if not normalized:
        return None
    if len(normalized) > MAX_PATTERN_LENGTH or normalized.count("*") > MAX_WILDCARDS:
        logger.warning("glob_pattern_rejected", pattern=pattern[:80], reason="too_complex")
        return None

    normalized = re.sub(r"\*+", "*", normalized)
    parts = [re.escape(part) for part in normalized.split("*")]
    try:
        return re.compile(".*".join(parts), re.DOTALL)
    except re.error as e:
        logger.warning("glob_pattern_invalid", pattern=pattern[:80], error=str(e))
        return None


def match(pattern: Optional[str], text: Optional[str]) -> bool:
    """
    Match a glob pattern against the whole text.

    Example:
        >>> match("google*", "GOOGLE CLOUD EMEA")
        True
        >>> match("*netflix*", "PP*NETFLIX.COM")
        True
    """
    if not pattern or not text or not isinstance(pattern, str):
        return False
    try:
        compiled = compile_pattern(pattern)
        if compiled is None:
            return False
        return compiled.fullmatch(transliterate(text)) is not None
    except Exception as e:
        logger.error("glob_match_failed", pattern=str(pattern)[:80], error=str(e))
        return False


def text_variants(
    name: Optional[str],
    partner: Optional[str],
    reference: Optional[str] = None
) -> List[str]:
    """
    Field permutations a pattern is tried against.

    Bank exports disagree on which field holds the counterparty, so
    patterns are tried on each field and on joined orderings.
    """
    return unique([
        name,
        partner,
        reference,
        join_fields(name, partner),
        join_fields(partner, name),
        join_fields(name, partner, reference),
        join_fields(partner, name, reference),
    ])


def match_flexible(
    pattern: Optional[str],
    name: Optional[str],
    partner: Optional[str],
    reference: Optional[str] = None
) -> bool:
    """True on the first field permutation the pattern matches."""
    if not pattern:
        return False
    return any(match(pattern, text) for text in text_variants(name, partner, reference))
