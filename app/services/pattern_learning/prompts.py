"""
Pattern Learning Prompts

Jinja2 templates for the two oracle rounds: proposal and dry-run
verification. Rendered with autoescape off (LLM prompts, not HTML) and
StrictUndefined so a missing variable fails loudly instead of producing a
silently incomplete prompt.
"""

from typing import Any, Dict, List

import structlog
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from app.services.matching.thresholds import LearningLimits

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You derive glob-style matching rules from German bank transaction data. "
    "You answer with a single JSON object and nothing else."
)

PROPOSAL_TEMPLATE = """You are analyzing bank transaction data to learn matching patterns for a partner.

## Partner Information
Name: {{ partner_name }}
Existing Aliases: {{ aliases | join(", ") if aliases else "(none)" }}

## MUST MATCH - Transactions assigned to this partner
Your patterns MUST match ALL of these:
{% for tx in positives %}
- partner: "{{ tx.partner or "(empty)" }}" | name: "{{ tx.name or "" }}"
{% else %}
(no transactions yet)
{% endfor %}

## MUST NOT MATCH - FALSE POSITIVES (user explicitly removed these)
These transactions were auto-matched but the user said they are WRONG. Your patterns MUST NOT match any of these:
{% for tx in removals %}
- partner: "{{ tx.partner or "(empty)" }}" | name: "{{ tx.name or "" }}"
{% else %}
(none)
{% endfor %}

## MUST NOT MATCH - Transactions assigned to OTHER partners
Your patterns must NOT match ANY of these (collision check):
{% for tx in collisions %}
- partner: "{{ tx.partner or "(empty)" }}" | name: "{{ tx.name or "" }}" -> assigned to: {{ tx.assigned_partner_name }}
{% else %}
(no other assigned transactions)
{% endfor %}

## Instructions

Generate glob-style patterns that will match future transactions from this partner.

IMPORTANT: Prefer GENERAL patterns over specific ones!
- If all transactions start with "Google", use "google*" not "google*cloud*", "google*ads*" separately
- Only be specific when necessary to avoid collisions with other partners
- Simpler patterns are better (easier to match future variations)

Pattern Rules:
1. Use * as a wildcard (matches any characters, including spaces)
2. Patterns must match ALL "must match" transactions
3. Patterns must NOT match ANY "must not match" transactions
4. Prefer shorter, more general patterns when safe
5. Handle spelling variations by using * between word parts:
   "Media Markt" and "Mediamarkt" -> use "*media*markt*" (not "*media markt*")
6. Common pattern examples:
   - "google*" matches all Google services (Cloud, Ads, YouTube, etc.)
   - "amazon*" matches "AMAZON.DE", "AMAZON EU SARL"
   - "*netflix*" matches "NETFLIX.COM", "PP*NETFLIX"
   - "*media*markt*" matches "Media Markt", "Mediamarkt", "MEDIAMARKT 1070"

Confidence Guidelines:
- 95-100: General pattern that matches all transactions without any collisions
- 85-94: Good pattern with low collision risk
- 70-84: More specific pattern needed to avoid collisions
- Below 70: Don't suggest patterns this weak

Respond ONLY with valid JSON (no markdown, no explanation):
{"patterns": [{"pattern": "google*", "confidence": 95, "reasoning": "All Google transactions start with 'google' and no collisions with other partners"}]}

If no good patterns can be learned (e.g. only one transaction with no clear pattern), return:
{"patterns": []}
"""

VERIFICATION_TEMPLATE = """You are VERIFYING patterns for partner "{{ partner_name }}".

Below are proposed patterns and what transactions they WOULD match if applied.
Review each pattern and decide whether to APPROVE or REJECT it.

Be VERY suspicious of patterns that match many transactions!
- Patterns matching more than {{ broad_count }} transactions are often too generic
- Patterns with common German words (rechnung, überweisung, zahlung) are usually wrong
- A good pattern is SPECIFIC to this partner, not generic banking terms

{% for section in sections %}
## Pattern: "{{ section.pattern }}" (proposed confidence: {{ section.confidence }}%)

MATCH STATISTICS: Would match {{ section.match_count }} transactions{% if section.match_percent is not none %} ({{ "%.1f" | format(section.match_percent) }}% of all {{ total_transactions }}){% endif %}{% if section.is_broad %} - THIS IS A LOT, BE CAREFUL!{% endif %}

{% if section.unassigned %}
UNASSIGNED (will be auto-assigned to {{ partner_name }}):
{% for m in section.unassigned %}
- "{{ m.partner or "(no partner)" }}" | "{{ m.name }}"
{% endfor %}
{% if section.unassigned_more %}
... and {{ section.unassigned_more }} more (REVIEW CAREFULLY - too many matches is suspicious!)
{% endif %}
{% else %}
(none unassigned)
{% endif %}

{% if section.conflicts %}
CONFLICTS (already assigned to OTHER partners):
{% for m in section.conflicts %}
- "{{ m.partner or "(no partner)" }}" | "{{ m.name }}" -> currently: {{ m.other_partner_name }}
{% endfor %}
{% if section.conflicts_more %}
... and {{ section.conflicts_more }} more conflicts
{% endif %}
{% else %}
(no conflicts)
{% endif %}

{% endfor %}
## Instructions
For each pattern, verify:
1. Do ALL the matched transactions clearly belong to "{{ partner_name }}"?
2. Is the pattern SPECIFIC enough? (Generic patterns like "*rechnung*" are WRONG)
3. Are there any false positives (transactions that shouldn't match)?
4. Does the match count seem reasonable?

REJECT patterns that:
- Match generic German banking terms (rechnung, überweisung, zahlung, lastschrift)
- Match too many transactions (more than {{ broad_count }} is suspicious unless all clearly belong to this partner)
- Have ANY conflicts with other partners
- Could plausibly match future unrelated transactions

Respond ONLY with valid JSON:
{"verified": [{"pattern": "google*", "approved": true, "adjustedConfidence": 95}, {"pattern": "*rechnung*", "approved": false, "reason": "too generic - matches any invoice"}]}
"""

_env = Environment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


def render(template_str: str, variables: Dict[str, Any], template_name: str) -> str:
    """
    Render a prompt template.

    Raises:
        TemplateSyntaxError: Invalid Jinja2 syntax
        UndefinedError: Missing required variable
    """
    try:
        rendered = _env.from_string(template_str).render(**variables)
    except TemplateSyntaxError as e:
        logger.error("prompt_template_syntax_error", template_name=template_name, error=str(e), line=e.lineno)
        raise
    except UndefinedError as e:
        logger.error("prompt_variable_missing", template_name=template_name, error=str(e))
        raise

    logger.debug("prompt_rendered", template_name=template_name, rendered_length=len(rendered))
    return rendered


def build_proposal_prompt(
    partner_name: str,
    aliases: List[str],
    positives: List[Dict[str, Any]],
    collisions: List[Dict[str, Any]],
    removals: List[Dict[str, Any]],
) -> str:
    """First round: positives plus both negative sets, each sampled."""
    return render(
        PROPOSAL_TEMPLATE,
        {
            "partner_name": partner_name,
            "aliases": aliases,
            "positives": positives,
            "collisions": collisions[:LearningLimits.COLLISION_SAMPLE],
            "removals": removals[:LearningLimits.REMOVAL_SAMPLE],
        },
        "pattern_learning.proposal",
    )


def build_verification_prompt(partner_name: str, sections: List[Dict[str, Any]], total_transactions: int) -> str:
    """Second round: each pattern with its real blast radius (see dry_run.verification_sections)."""
    return render(
        VERIFICATION_TEMPLATE,
        {
            "partner_name": partner_name,
            "sections": sections,
            "total_transactions": total_transactions,
            "broad_count": LearningLimits.BROAD_MATCH_COUNT,
        },
        "pattern_learning.verification",
    )
