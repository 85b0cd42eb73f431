"""
LLM-backed prompt signal extraction.

One provider call per prompt (30s timeout, no retries). Any failure yields an
empty result so the keyword path is never affected.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, StringConstraints, TypeAdapter, ValidationError

from ...core.config import llm_api_key_configured
from ..llm import complete_chat
from .tools import normalize_tool_name
from .types import (
    MAX_NOTES_LENGTH,
    WIRE_KEYS,
    ConstraintSignal,
    DecisionMaker,
    PromptSignal,
    PromptSignalsPartial,
    SignalMetadata,
    clamp_confidence,
)

logger = logging.getLogger(__name__)

PROMPT_TIMEOUT_MS = 30_000
MAX_OUTPUT_TOKENS = 1_200
DEFAULT_CONFIDENCE = 0.6

SYSTEM_PROMPT = """You are the Prompt Intelligence extraction service. Convert user workspace briefs into structured JSON signals.
- Respond with ONLY a JSON object that matches the schema below. No commentary.
- Omit any field you cannot determine confidently.
- Populate confidences between 0 and 1.

Schema (partial fields allowed):
{
  "teamSizeBracket": { "value": "solo|1-9|10-24|25+|unknown", "confidence": 0-1, "notes": string? },
  "decisionMakers": { "value": [ { "role": string, "seniority": "ic|manager|director+", "isPrimary": boolean } ], "confidence": 0-1, "notes": string? },
  "approvalChainDepth": { "value": "single|dual|multi|unknown", ... },
  "tools": { "value": ["Slack|Jira|Notion|Salesforce|Asana|ServiceNow|Zendesk|Other"...], ... },
  "integrationCriticality": { "value": "must-have|nice-to-have|unspecified", ... },
  "complianceTags": { "value": ["SOC2|HIPAA|ISO27001|GDPR|SOX|audit|regulated-industry|other"...], ... },
  "copyTone": { "value": "fast-paced|meticulous|trusted-advisor|onboarding|migration|neutral", ... },
  "industry": { "value": "saas|fintech|healthcare|education|manufacturing|public-sector|other", ... },
  "primaryObjective": { "value": "launch|scale|migrate|optimize|compliance|other", ... },
  "constraints": { "value": { "timeline": "rush|standard|flexible"?, "budget": "tight|standard|premium"?, "notes": string? }, ... },
  "operatingRegion": { "value": "na|emea|latam|apac|global|unspecified", ... }
}
"""


class _DecisionMakerIn(BaseModel):
    role: Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1, max_length=80)]
    seniority: Literal["ic", "manager", "director+"]
    isPrimary: StrictBool


class _ConstraintIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timeline: Optional[Literal["rush", "standard", "flexible"]] = None
    budget: Optional[Literal["tight", "standard", "premium"]] = None
    notes: Optional[Annotated[StrictStr, StringConstraints(strip_whitespace=True, max_length=MAX_NOTES_LENGTH)]] = None


ComplianceTagIn = Literal["SOC2", "HIPAA", "ISO27001", "GDPR", "SOX", "audit", "regulated-industry", "other"]


def _dedupe(values: List[Any]) -> Tuple[Any, ...]:
    seen: List[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def _tools(values: List[str]) -> Optional[Tuple[str, ...]]:
    deduped = _dedupe([normalize_tool_name(v) for v in values])
    return deduped or None


def _compliance(values: List[str]) -> Optional[Tuple[str, ...]]:
    return _dedupe(values) or None


def _decision_makers(values: List[_DecisionMakerIn]) -> Tuple[DecisionMaker, ...]:
    return tuple(DecisionMaker(role=v.role, seniority=v.seniority, is_primary=v.isPrimary) for v in values)


def _constraints(value: _ConstraintIn) -> Optional[ConstraintSignal]:
    constraint = ConstraintSignal(timeline=value.timeline, budget=value.budget, notes=value.notes or None)
    return None if constraint.is_empty() else constraint


def _identity(value: Any) -> Any:
    return value


# attribute name -> (validator, post-processor returning None to drop the signal)
_VALIDATORS: Dict[str, Tuple[TypeAdapter, Callable[[Any], Any]]] = {
    "team_size_bracket": (TypeAdapter(Literal["solo", "1-9", "10-24", "25+", "unknown"]), _identity),
    "decision_makers": (
        TypeAdapter(Annotated[List[_DecisionMakerIn], Field(min_length=1, max_length=5)]),
        _decision_makers,
    ),
    "approval_chain_depth": (TypeAdapter(Literal["single", "dual", "multi", "unknown"]), _identity),
    "tools": (TypeAdapter(Annotated[List[StrictStr], Field(min_length=1, max_length=8)]), _tools),
    "integration_criticality": (TypeAdapter(Literal["must-have", "nice-to-have", "unspecified"]), _identity),
    "compliance_tags": (TypeAdapter(Annotated[List[ComplianceTagIn], Field(min_length=1, max_length=8)]), _compliance),
    "copy_tone": (
        TypeAdapter(Literal["fast-paced", "meticulous", "trusted-advisor", "onboarding", "migration", "neutral"]),
        _identity,
    ),
    "industry": (
        TypeAdapter(Literal["saas", "fintech", "healthcare", "education", "manufacturing", "public-sector", "other"]),
        _identity,
    ),
    "primary_objective": (
        TypeAdapter(Literal["launch", "scale", "migrate", "optimize", "compliance", "other"]),
        _identity,
    ),
    "constraints": (TypeAdapter(_ConstraintIn), _constraints),
    "operating_region": (TypeAdapter(Literal["na", "emea", "latam", "apac", "global", "unspecified"]), _identity),
}


def _normalize_notes(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed[:MAX_NOTES_LENGTH] if trimmed else None


def _parse_signal(key: str, wire_key: str, raw: Any) -> Optional[PromptSignal]:
    if raw is None:
        return None

    adapter, post = _VALIDATORS[key]
    is_container = isinstance(raw, dict) and "value" in raw
    candidate = raw["value"] if is_container else raw

    try:
        validated = adapter.validate_python(candidate)
    except ValidationError as exc:
        raise ValueError(f"Invalid value for {wire_key}") from exc

    value = post(validated)
    if value is None:
        return None

    confidence = clamp_confidence(raw.get("confidence"), DEFAULT_CONFIDENCE) if is_container else DEFAULT_CONFIDENCE
    notes = _normalize_notes(raw.get("notes")) if is_container else None
    return PromptSignal(value=value, metadata=SignalMetadata(source="llm", confidence=confidence, notes=notes))


def parse_signal_payload(payload: Any) -> PromptSignalsPartial:
    """
    Validate a decoded LLM payload into partial signals.

    Raises ValueError when the payload is not an object or when any known key
    carries an invalid value.
    """
    if not isinstance(payload, dict):
        raise ValueError("LLM parser payload is not an object")

    result: PromptSignalsPartial = {}
    for wire_key, raw in payload.items():
        key = WIRE_KEYS.get(wire_key)
        if key is None:
            continue
        signal = _parse_signal(key, wire_key, raw)
        if signal is not None:
            result[key] = signal
    return result


_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_json_snippet(text: str) -> str:
    """Return the outermost `{...}` span of `text` after stripping code fences."""
    if not text:
        return ""
    cleaned = _FENCE_RE.sub("", text).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end < start:
        return ""
    return cleaned[start:end + 1]


def build_user_prompt(prompt: str) -> str:
    return f'Prompt:\n"""{prompt}"""\nExtract the taxonomy signals. Remember to respond with JSON only.'


def fetch_signals_from_llm(prompt: str, timeout_ms: int = PROMPT_TIMEOUT_MS) -> PromptSignalsPartial:
    """
    Ask the LLM for structured signals. Returns {} when no key is configured,
    when the call fails or when the response cannot be validated.
    """
    if not prompt or not prompt.strip():
        return {}

    if not llm_api_key_configured():
        logger.debug("No LLM API key configured; skipping LLM signal parser")
        return {}

    try:
        response = complete_chat(
            SYSTEM_PROMPT,
            build_user_prompt(prompt),
            max_tokens=MAX_OUTPUT_TOKENS,
            timeout_s=timeout_ms / 1000.0 if timeout_ms > 0 else None,
        )
        raw = response.choices[0].message.content or ""
        snippet = extract_json_snippet(raw)
        if not snippet:
            logger.warning("LLM signal parser returned empty or non-JSON response")
            return {}

        signals = parse_signal_payload(json.loads(snippet))
        logger.info("LLM signal parser extracted %d signal(s)", len(signals), extra={"step": "prompt_intel"})
        return signals
    except Exception as e:
        logger.warning("LLM signal parser failed: %s", e, extra={"step": "prompt_intel"})
        return {}
