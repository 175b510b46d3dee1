"""
Completion Oracle

Narrow interface to the LLM used for pattern learning:

    complete(system, prompt) -> text

The oracle is untrusted and schema-less. Its output may be wrapped in
markdown fences or surrounded by prose, so parsing is permissive and every
failure comes back as an OracleError value, never as an exception.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import settings
from app.exceptions import OracleError
from app.services.monitoring.circuit_breakers import CircuitBreakerError, get_claude_breaker
from app.services.pattern_learning.prompts import SYSTEM_PROMPT

logger = structlog.get_logger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


class CompletionOracle(Protocol):
    def complete(self, system: str, prompt: str) -> str:
        ...


class ClaudeOracle:
    """Anthropic Messages API behind the claude circuit breaker."""

    def __init__(self, client: Any = None, model: Optional[str] = None):
        if client is None:
            if not settings.anthropic_api_key:
                raise OracleError("not_configured", "ANTHROPIC_API_KEY is not set")
            # Lazy import keeps the SDK out of import time for tests
            from anthropic import Anthropic
            client = Anthropic(api_key=settings.anthropic_api_key)
        self.client = client
        self.model = model or settings.anthropic_model

    def complete(self, system: str, prompt: str) -> str:
        breaker = get_claude_breaker()
        try:
            message = breaker.call(
                self.client.messages.create,
                model=self.model,
                max_tokens=settings.oracle_max_tokens,
                temperature=settings.oracle_temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except CircuitBreakerError:
            logger.error("claude_circuit_open")
            raise OracleError("circuit_open")
        except Exception as e:
            raise OracleError("request_failed", str(e))

        usage = getattr(message, "usage", None)
        logger.info(
            "oracle_completed",
            model=self.model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )
        if not message.content:
            raise OracleError("empty_response")
        return message.content[0].text


def get_oracle() -> CompletionOracle:
    return ClaudeOracle()


# Response schemas

class VerificationDecision(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pattern: str
    approved: bool = True
    adjusted_confidence: Optional[float] = Field(None, alias="adjustedConfidence")
    reason: Optional[str] = None


@dataclass
class OracleResult:
    """Parsed oracle output or the reason there is none."""
    items: List[Any] = field(default_factory=list)
    error: Optional[OracleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_json_response(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from oracle output.

    Tries, in order: the whole text, the first fenced block, the outermost
    {...} span. Returns None when nothing parses to an object.

    Example:
        >>> parse_json_response('```json\\n{"patterns": []}\\n```')
        {'patterns': []}
    """
    if not text or not text.strip():
        return None

    candidates = [text.strip()]
    fenced = _FENCED.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _ask(oracle: CompletionOracle, prompt: str, key: str, round_name: str) -> OracleResult:
    try:
        text = oracle.complete(SYSTEM_PROMPT, prompt)
    except OracleError as e:
        logger.warning("oracle_call_failed", round=round_name, reason=e.reason, detail=e.detail)
        return OracleResult(error=e)

    parsed = parse_json_response(text)
    if parsed is None:
        logger.warning("oracle_response_unparsable", round=round_name, preview=(text or "")[:200])
        return OracleResult(error=OracleError("unparsable_response"))

    items = parsed.get(key)
    if not isinstance(items, list):
        # Only an explicit empty list means "nothing to learn"
        logger.warning("oracle_response_without_items", round=round_name, key=key)
        return OracleResult(error=OracleError("missing_items", key))
    return OracleResult(items=items)


def propose_patterns(oracle: CompletionOracle, prompt: str) -> OracleResult:
    """
    First round. items are raw pattern dicts; the safety filter validates them.
    """
    return _ask(oracle, prompt, "patterns", "proposal")


def verify_patterns(oracle: CompletionOracle, prompt: str) -> OracleResult:
    """
    Second round. items are VerificationDecision objects; malformed entries
    are dropped, which leaves their pattern approved by omission.
    """
    result = _ask(oracle, prompt, "verified", "verification")
    if not result.ok:
        return result

    decisions = []
    for entry in result.items:
        try:
            decisions.append(VerificationDecision.model_validate(entry))
        except ValidationError as e:
            logger.warning("verification_entry_invalid", entry=str(entry)[:120], error=str(e))
    return OracleResult(items=decisions)
