"""
Typed prompt signals extracted from a free-text workspace brief.

Every category is a `PromptSignal` (value + provenance metadata). A complete
set is a `PromptSignals`; extractors return a partial dict keyed by the same
attribute names.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

SignalSource = Literal["keyword", "llm", "merge"]

TEAM_SIZE_BRACKETS = ("solo", "1-9", "10-24", "25+", "unknown")
SENIORITY_LEVELS = ("ic", "manager", "director+")
APPROVAL_CHAIN_DEPTHS = ("single", "dual", "multi", "unknown")
INTEGRATION_CRITICALITY = ("must-have", "nice-to-have", "unspecified")
COMPLIANCE_TAGS = ("SOC2", "HIPAA", "ISO27001", "GDPR", "SOX", "audit", "regulated-industry", "other")
COPY_TONES = ("fast-paced", "meticulous", "trusted-advisor", "onboarding", "migration", "neutral")
INDUSTRIES = ("saas", "fintech", "healthcare", "education", "manufacturing", "public-sector", "other")
PRIMARY_OBJECTIVES = ("launch", "scale", "migrate", "optimize", "compliance", "other")
TIMELINE_CONSTRAINTS = ("rush", "standard", "flexible")
BUDGET_CONSTRAINTS = ("tight", "standard", "premium")
OPERATING_REGIONS = ("na", "emea", "latam", "apac", "global", "unspecified")

MAX_NOTES_LENGTH = 160

# attribute name -> wire (JSON) key, in display order
SIGNAL_KEYS: Dict[str, str] = {
    "team_size_bracket": "teamSizeBracket",
    "decision_makers": "decisionMakers",
    "approval_chain_depth": "approvalChainDepth",
    "tools": "tools",
    "integration_criticality": "integrationCriticality",
    "compliance_tags": "complianceTags",
    "copy_tone": "copyTone",
    "industry": "industry",
    "primary_objective": "primaryObjective",
    "constraints": "constraints",
    "operating_region": "operatingRegion",
}
WIRE_KEYS: Dict[str, str] = {wire: attr for attr, wire in SIGNAL_KEYS.items()}

SIGNAL_LABELS: Dict[str, str] = {
    "team_size_bracket": "Team size",
    "decision_makers": "Decision makers",
    "approval_chain_depth": "Approval depth",
    "tools": "Tools",
    "integration_criticality": "Integration criticality",
    "compliance_tags": "Compliance",
    "copy_tone": "Copy tone",
    "industry": "Industry",
    "primary_objective": "Primary objective",
    "constraints": "Constraints",
    "operating_region": "Region",
}


def clamp_confidence(value: Any, default: float = 0.0) -> float:
    """Clamp to [0, 1]; non-numeric or non-finite input yields `default`."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):
        return default
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class SignalMetadata:
    source: SignalSource
    confidence: float
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"source": self.source, "confidence": self.confidence}
        if self.notes:
            data["notes"] = self.notes
        return data


@dataclass(frozen=True)
class DecisionMaker:
    role: str
    seniority: str
    is_primary: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "seniority": self.seniority, "isPrimary": self.is_primary}


@dataclass(frozen=True)
class ConstraintSignal:
    timeline: Optional[str] = None
    budget: Optional[str] = None
    notes: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.timeline or self.budget or self.notes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (("timeline", self.timeline), ("budget", self.budget), ("notes", self.notes))
            if value
        }


@dataclass(frozen=True)
class PromptSignal:
    value: Any
    metadata: SignalMetadata

    @property
    def confidence(self) -> float:
        return self.metadata.confidence

    @property
    def source(self) -> SignalSource:
        return self.metadata.source

    def with_metadata(self, **changes: Any) -> "PromptSignal":
        return PromptSignal(value=self.value, metadata=replace(self.metadata, **changes))

    def to_dict(self) -> Dict[str, Any]:
        return {"value": serialize_signal_value(self.value), "metadata": self.metadata.to_dict()}


PromptSignalsPartial = Dict[str, PromptSignal]


@dataclass(frozen=True)
class PromptSignals:
    team_size_bracket: PromptSignal
    decision_makers: PromptSignal
    approval_chain_depth: PromptSignal
    tools: PromptSignal
    integration_criticality: PromptSignal
    compliance_tags: PromptSignal
    copy_tone: PromptSignal
    industry: PromptSignal
    primary_objective: PromptSignal
    constraints: PromptSignal
    operating_region: PromptSignal

    def items(self) -> List[Tuple[str, PromptSignal]]:
        return [(f.name, getattr(self, f.name)) for f in fields(self)]

    def to_dict(self) -> Dict[str, Any]:
        return {SIGNAL_KEYS[name]: signal.to_dict() for name, signal in self.items()}


def serialize_signal_value(value: Any) -> Any:
    if isinstance(value, (DecisionMaker, ConstraintSignal)):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [serialize_signal_value(v) for v in value]
    return value


def _default(value: Any) -> PromptSignal:
    return PromptSignal(value=value, metadata=SignalMetadata(source="merge", confidence=0.0))


def create_default_signals() -> PromptSignals:
    return PromptSignals(
        team_size_bracket=_default("unknown"),
        decision_makers=_default(()),
        approval_chain_depth=_default("unknown"),
        tools=_default(()),
        integration_criticality=_default("unspecified"),
        compliance_tags=_default(()),
        copy_tone=_default("neutral"),
        industry=_default("other"),
        primary_objective=_default("other"),
        constraints=_default(ConstraintSignal()),
        operating_region=_default("unspecified"),
    )


def format_signal_value(signal: PromptSignal) -> str:
    """Human-readable rendering of a signal value for debug panels and logs."""
    value = signal.value
    if isinstance(value, (list, tuple)):
        if not value:
            return "Not set"
        if isinstance(value[0], DecisionMaker):
            return f"{len(value)} entries"
        return ", ".join(str(v) for v in value)
    if isinstance(value, ConstraintSignal):
        parts = [p for p in (value.timeline, value.budget, value.notes) if p]
        return " • ".join(parts) if parts else "No constraints"
    if value is None or value == "":
        return "Not set"
    return str(value)


def summarize_prompt_signals(signals: PromptSignals) -> List[Dict[str, Any]]:
    return [
        {
            "key": SIGNAL_KEYS[name],
            "label": SIGNAL_LABELS[name],
            "value": serialize_signal_value(signal.value),
            "display": format_signal_value(signal),
            "source": signal.source,
            "confidence": signal.confidence,
            "notes": signal.metadata.notes,
        }
        for name, signal in signals.items()
    ]
