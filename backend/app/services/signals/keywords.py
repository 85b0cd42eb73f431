"""
Deterministic keyword extraction of prompt signals.

Pure and offline: every emitted signal carries confidence 1.0, source
`keyword` and notes describing the match that produced it.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .tools import TOOL_DEFINITIONS, sanitize_text
from .types import PromptSignal, PromptSignalsPartial, SignalMetadata

logger = logging.getLogger(__name__)

KEYWORD_CONFIDENCE = 1.0

SOLO_KEYWORDS = ["solo", "just me", "individual contributor", "one person", "single founder"]
SMALL_TEAM_KEYWORDS = ["small team", "under 10", "less than 10", "tiny team"]
MID_TEAM_KEYWORDS = ["mid-sized team", "mid size team", "mid team", "growth team"]
LARGE_TEAM_KEYWORDS = ["large team", "enterprise team", "big team", "over 25"]

COMPLIANCE_KEYWORDS: Dict[str, List[str]] = {
    "SOC2": ["soc2", "soc 2"],
    "HIPAA": ["hipaa"],
    "ISO27001": ["iso27001", "iso 27001"],
    "GDPR": ["gdpr", "privacy law", "privacy regulation"],
    "SOX": ["sox", "sarbanes-oxley", "sarbanes oxley"],
    "audit": ["audit ready", "audit-ready", "audit"],
    "regulated-industry": ["regulated industry", "highly regulated", "regulated market"],
}
GENERAL_COMPLIANCE_KEYWORDS = ["compliance", "regulatory", "regulation"]

TONE_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("fast-paced", ["fast paced", "fast-paced", "punchy", "energetic", "snappy", "quick turnaround"]),
    ("meticulous", ["meticulous", "detailed", "thorough", "buttoned up", "buttoned-up", "compliance focused"]),
    ("trusted-advisor", ["trusted advisor", "trusted-advisor", "advisory", "consultative", "guidance"]),
    ("onboarding", ["onboarding", "welcome experience", "getting started"]),
    ("migration", ["migration", "cutover", "data move"]),
]

_RANGE_RE = re.compile(r"(\d{1,3})\s*(?:-|to)\s*(\d{1,3})", re.IGNORECASE)
_EXPLICIT_RE = re.compile(
    r"(\d{1,3})(?:\s*-\s*(?=person|people|member|team))?\s*(?:person|people|member|team)s?\b",
    re.IGNORECASE,
)
_PLUS_RE = re.compile(r"(\d{1,3})\s*\+")
_LOOSE_NUMBER_RE = re.compile(r"(\d{1,3})")


@dataclass(frozen=True)
class NormalizedPrompt:
    original: str
    lower: str
    sanitized: str


@dataclass(frozen=True)
class RangeMatch:
    start: int
    end: int
    min: int
    max: int
    raw: str


def _signal(value, notes: Optional[str] = None) -> PromptSignal:
    return PromptSignal(
        value=value,
        metadata=SignalMetadata(source="keyword", confidence=KEYWORD_CONFIDENCE, notes=notes),
    )


def _normalize_prompt(prompt: str) -> NormalizedPrompt:
    return NormalizedPrompt(original=prompt, lower=prompt.lower(), sanitized=sanitize_text(prompt))


def _first_hit(text: str, keywords: Sequence[str]) -> Optional[str]:
    return next((k for k in keywords if k in text), None)


def bracket_for_headcount(value: int) -> Optional[str]:
    if value <= 0:
        return None
    if value <= 1:
        return "solo"
    if value <= 9:
        return "1-9"
    if value <= 24:
        return "10-24"
    return "25+"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _collect_ranges(text: str) -> List[RangeMatch]:
    return [
        RangeMatch(start=m.start(), end=m.end(), min=int(m.group(1)), max=int(m.group(2)), raw=m.group(0))
        for m in _RANGE_RE.finditer(text)
    ]


def _within_range(ranges: List[RangeMatch], index: int) -> bool:
    return any(r.start <= index < r.end for r in ranges)


def _detect_team_size(normalized: NormalizedPrompt) -> Optional[PromptSignal]:
    hit = _first_hit(normalized.lower, SOLO_KEYWORDS)
    if hit:
        return _signal("solo", f"keyword: {hit}")

    ranges = _collect_ranges(normalized.original)

    for match in _EXPLICIT_RE.finditer(normalized.original):
        if _within_range(ranges, match.start()):
            continue
        bracket = bracket_for_headcount(int(match.group(1)))
        if bracket:
            return _signal(bracket, f'matched explicit headcount "{match.group(0)}"')

    for match in _PLUS_RE.finditer(normalized.original):
        if _within_range(ranges, match.start()):
            continue
        value = int(match.group(1))
        bracket = bracket_for_headcount(value if value < 25 else 25)
        if bracket:
            return _signal(bracket, f'matched plus headcount "{match.group(0)}"')

    if ranges:
        first = ranges[0]
        bracket = bracket_for_headcount(_round_half_up((first.min + first.max) / 2))
        if bracket:
            return _signal(bracket, f'matched range "{first.raw}"')

    for bracket, keywords in (("1-9", SMALL_TEAM_KEYWORDS), ("10-24", MID_TEAM_KEYWORDS), ("25+", LARGE_TEAM_KEYWORDS)):
        hit = _first_hit(normalized.lower, keywords)
        if hit:
            return _signal(bracket, f"keyword: {hit}")

    for match in _LOOSE_NUMBER_RE.finditer(normalized.original):
        if _within_range(ranges, match.start()):
            continue
        bracket = bracket_for_headcount(int(match.group(1)))
        if bracket:
            return _signal(bracket, f'matched numeric headcount "{match.group(0)}"')

    return None


def _detect_tools(normalized: NormalizedPrompt) -> Optional[PromptSignal]:
    matched: List[str] = []
    notes: List[str] = []
    for definition in TOOL_DEFINITIONS:
        if definition.id == "Other":
            continue
        hit = _first_hit(normalized.sanitized, definition.keywords)
        if hit and definition.id not in matched:
            matched.append(definition.id)
            notes.append(f"{definition.id} ({hit})")

    if not matched:
        return None
    return _signal(tuple(matched), f"keywords: {', '.join(notes)}")


def _detect_compliance(normalized: NormalizedPrompt) -> Optional[PromptSignal]:
    matched: List[str] = []
    notes: List[str] = []
    for tag, keywords in COMPLIANCE_KEYWORDS.items():
        hit = _first_hit(normalized.sanitized, keywords)
        if hit:
            matched.append(tag)
            notes.append(f"{tag} ({hit})")

    if not matched:
        general = _first_hit(normalized.sanitized, GENERAL_COMPLIANCE_KEYWORDS)
        if general:
            matched.append("other")
            notes.append(f"other ({general})")

    if not matched:
        return None
    return _signal(tuple(matched), f"keywords: {', '.join(notes)}")


def _detect_tone(normalized: NormalizedPrompt) -> Optional[PromptSignal]:
    for tone, keywords in TONE_KEYWORDS:
        hit = _first_hit(normalized.sanitized, keywords)
        if hit:
            return _signal(tone, f"keyword: {hit}")
    return None


def extract_signals_from_keywords(prompt: str) -> PromptSignalsPartial:
    """
    Extract team size, tools, compliance tags and copy tone from `prompt`.

    Returns an empty dict for blank prompts or when nothing matches.
    """
    partial: PromptSignalsPartial = {}
    if not prompt or not prompt.strip():
        return partial

    normalized = _normalize_prompt(prompt)

    detectors = (
        ("team_size_bracket", _detect_team_size),
        ("tools", _detect_tools),
        ("compliance_tags", _detect_compliance),
        ("copy_tone", _detect_tone),
    )
    for key, detector in detectors:
        signal = detector(normalized)
        if signal is not None:
            partial[key] = signal

    logger.debug("Keyword extraction matched %d signal(s)", len(partial))
    return partial
