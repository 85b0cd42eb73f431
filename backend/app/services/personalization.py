"""
Knob scoring for canvas recipes.

Maps merged prompt signals onto the five recipe knobs. Each knob is scored by
an ordered rule cascade; a rule that fires may `lock` the knob so later,
lower-priority rules cannot override it. Two guardrails sit around the
cascades:

- a conflict pre-check (governance vs fast tone, solo vs multiple deciders)
  that short-circuits scoring and keeps every default;
- an aggregate-confidence check over every confidence a rule actually used,
  which reverts to defaults when the evidence is weak overall.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .recipes import CanvasRecipe, EnumKnob, NumberKnob, clamp_number_knob, get_recipe
from .signals.types import PromptSignals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringThresholds:
    # A signal at or above `high` is usable on its own.
    high: float = 0.4
    # Usable only when corroborated by another signal.
    supporting: float = 0.25
    # Minimum aggregate confidence, and the bar for conflict detection.
    fallback: float = 0.5


DEFAULT_THRESHOLDS = ScoringThresholds()

CONFLICT_GOVERNANCE_VS_FAST = "conflict_governance_vs_fast"
CONFLICT_SOLO_VS_TEAM = "conflict_solo_vs_team"
INSUFFICIENT_CONFIDENCE = "insufficient_confidence"

FAST_TONES = ("fast-paced", "onboarding")

APPROVAL_DEPTH_TO_LENGTH = {"single": 0, "dual": 1, "multi": 2, "unknown": 0}
COPY_TONE_TO_KNOB = {
    "fast-paced": "friendly",
    "onboarding": "friendly",
    "meticulous": "compliance",
    "trusted-advisor": "client_ready",
    "migration": "client_ready",
}
TEAM_SIZE_CADENCE = {
    "solo": ("none", "Solo operator: suppressing notifications by default"),
    "1-9": ("weekly", "Small team: weekly digest keeps signal without noise"),
    "10-24": ("daily", "Mid-size team: daily summaries recommended"),
    "25+": ("real_time", "Large team: real-time alerts maintain alignment"),
}


@dataclass(frozen=True)
class KnobOverride:
    value: Any
    rationale: str
    changed_from_default: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "rationale": self.rationale,
            "changedFromDefault": self.changed_from_default,
        }


@dataclass(frozen=True)
class FallbackResult:
    applied: bool
    reasons: Tuple[str, ...] = ()
    details: Tuple[str, ...] = ()
    aggregate_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "reasons": list(self.reasons),
            "details": list(self.details),
            "aggregateConfidence": self.aggregate_confidence,
        }


@dataclass(frozen=True)
class RecipePersonalizationResult:
    recipe_id: str
    overrides: Dict[str, KnobOverride]
    fallback: FallbackResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overrides": {knob_id: o.to_dict() for knob_id, o in self.overrides.items()},
            "fallback": self.fallback.to_dict(),
        }


# ---------------------------------------------------------------------------
# Evidence helpers
# ---------------------------------------------------------------------------

def should_use(confidence: float, supported: bool, thresholds: ScoringThresholds = DEFAULT_THRESHOLDS) -> bool:
    if confidence >= thresholds.high:
        return True
    return supported and confidence >= thresholds.supporting


@dataclass(frozen=True)
class ScoringContext:
    """Derived facts shared by every cascade for one scoring run."""

    recipe_id: str
    signals: PromptSignals
    thresholds: ScoringThresholds
    compliance: bool
    compliance_confidence: float
    primary_deciders: int
    tools: Tuple[str, ...]

    def usable(self, confidence: float, supported: bool) -> bool:
        return should_use(confidence, supported, self.thresholds)

    @property
    def multiple_approvers(self) -> bool:
        return self.primary_deciders >= 2

    @property
    def slack_and_jira(self) -> bool:
        return "Slack" in self.tools and "Jira" in self.tools


def compliance_evidence(
    signals: PromptSignals, thresholds: ScoringThresholds = DEFAULT_THRESHOLDS
) -> Tuple[bool, float]:
    """
    Whether compliance is in play, and the strongest confidence behind it.

    Tags count regardless of confidence; a compliance objective or multi-step
    approval depth counts when usable with tags as support.
    """
    tags_present = len(signals.compliance_tags.value) > 0
    contributing: List[float] = []

    if tags_present:
        contributing.append(signals.compliance_tags.confidence)

    objective = signals.primary_objective
    if objective.value == "compliance" and should_use(objective.confidence, tags_present, thresholds):
        contributing.append(objective.confidence)

    depth = signals.approval_chain_depth
    if depth.value == "multi" and should_use(depth.confidence, tags_present, thresholds):
        contributing.append(depth.confidence)

    return bool(contributing), max(contributing, default=0.0)


def build_context(recipe_id: str, signals: PromptSignals, thresholds: ScoringThresholds) -> ScoringContext:
    compliance, compliance_confidence = compliance_evidence(signals, thresholds)
    return ScoringContext(
        recipe_id=recipe_id,
        signals=signals,
        thresholds=thresholds,
        compliance=compliance,
        compliance_confidence=compliance_confidence,
        primary_deciders=sum(1 for d in signals.decision_makers.value if d.is_primary),
        tools=tuple(signals.tools.value),
    )


# ---------------------------------------------------------------------------
# Cascade machinery
# ---------------------------------------------------------------------------

@dataclass
class KnobScore:
    default: Any
    value: Any
    rationale: List[str] = field(default_factory=list)
    trailing: List[str] = field(default_factory=list)
    confidences: List[float] = field(default_factory=list)
    locked: bool = False

    def apply(self, value: Any, sentence: str, *, confidence: Optional[float] = None, lock: bool = True) -> None:
        self.value = value
        self.rationale.append(sentence)
        if confidence is not None:
            self.confidences.append(confidence)
        if lock:
            self.locked = True

    @property
    def changed(self) -> bool:
        return self.value != self.default


Predicate = Callable[[ScoringContext, KnobScore], bool]
Action = Callable[[ScoringContext, KnobScore], None]


@dataclass(frozen=True)
class Rule:
    name: str
    when: Predicate
    then: Action


def run_cascade(rules: Sequence[Rule], ctx: ScoringContext, score: KnobScore, keep_default: str) -> KnobScore:
    for rule in rules:
        if score.locked:
            break
        if rule.when(ctx, score):
            rule.then(ctx, score)

    if not score.changed:
        score.rationale.append(keep_default.format(default=score.default))
    score.rationale.extend(score.trailing)
    return score


# ---------------------------------------------------------------------------
# approvalChainLength
# ---------------------------------------------------------------------------

def _approval_rules(definition: NumberKnob) -> List[Rule]:
    def depth_present(ctx: ScoringContext, score: KnobScore) -> bool:
        return ctx.signals.approval_chain_depth.value != "unknown"

    def map_depth(ctx: ScoringContext, score: KnobScore) -> None:
        depth = ctx.signals.approval_chain_depth
        if ctx.usable(depth.confidence, ctx.compliance or ctx.multiple_approvers):
            mapped = clamp_number_knob(definition, APPROVAL_DEPTH_TO_LENGTH[depth.value])
            score.apply(
                mapped,
                f"Mapped approval depth '{depth.value}' (confidence {depth.confidence:.2f}) to {mapped}",
                confidence=depth.confidence,
                lock=False,
            )
        else:
            score.trailing.append(f"Ignored low-confidence approval depth signal (<{ctx.thresholds.high})")

    def raise_for_compliance(ctx: ScoringContext, score: KnobScore) -> None:
        value = clamp_number_knob(definition, 2) if score.value < 2 else score.value
        score.apply(value, "Raised approvals for compliance-sensitive signals", confidence=ctx.compliance_confidence)

    def trusted_deciders(ctx: ScoringContext, score: KnobScore) -> bool:
        makers = ctx.signals.decision_makers
        return (
            len(makers.value) > 0
            and ctx.usable(makers.confidence, ctx.multiple_approvers)
            and score.value < 1
        )

    def ensure_one_approver(ctx: ScoringContext, score: KnobScore) -> None:
        score.apply(
            clamp_number_knob(definition, 1),
            "Ensured at least one approver based on multiple decision makers",
            confidence=ctx.signals.decision_makers.confidence,
        )

    return [
        Rule("map_depth", depth_present, map_depth),
        Rule("compliance_minimum", lambda ctx, s: ctx.compliance, raise_for_compliance),
        Rule("decision_makers_minimum", trusted_deciders, ensure_one_approver),
    ]


# ---------------------------------------------------------------------------
# integrationMode
# ---------------------------------------------------------------------------

def _multi_tool_evidence(ctx: ScoringContext, score: KnobScore) -> bool:
    must_have = ctx.signals.integration_criticality.value == "must-have"
    return len(ctx.tools) >= 2 and ctx.usable(ctx.signals.tools.confidence, must_have or ctx.slack_and_jira)


def _multi_tool(ctx: ScoringContext, score: KnobScore) -> None:
    sentence = (
        "Detected Slack and Jira; prioritizing multi-tool integrations"
        if ctx.slack_and_jira
        else "Multiple high-confidence tools referenced; surfacing multi-tool mode"
    )
    score.apply("multi_tool", sentence, confidence=ctx.signals.tools.confidence)


def _must_have_integration(ctx: ScoringContext, score: KnobScore) -> bool:
    criticality = ctx.signals.integration_criticality
    return criticality.value == "must-have" and ctx.usable(criticality.confidence, len(ctx.tools) > 0)


INTEGRATION_RULES: List[Rule] = [
    Rule(
        "compliance_governed",
        lambda ctx, s: ctx.compliance,
        lambda ctx, s: s.apply(
            "governed",
            "Compliance or governance signals detected; forcing governed integrations",
            confidence=ctx.compliance_confidence,
        ),
    ),
    Rule("multi_tool", _multi_tool_evidence, _multi_tool),
    Rule(
        "must_have",
        _must_have_integration,
        lambda ctx, s: s.apply(
            "multi_tool",
            "Integration called out as must-have; elevating multi-tool mode",
            confidence=ctx.signals.integration_criticality.confidence,
        ),
    ),
    Rule(
        "client_portal",
        lambda ctx, s: ctx.recipe_id == "R3" and s.value != "client_portal",
        lambda ctx, s: s.apply("client_portal", "Client recipe prefers portal integrations by default"),
    ),
]


# ---------------------------------------------------------------------------
# copyTone
# ---------------------------------------------------------------------------

def _mapped_tone(ctx: ScoringContext, score: KnobScore) -> bool:
    tone = ctx.signals.copy_tone
    if tone.value == "neutral" or not ctx.usable(tone.confidence, ctx.compliance):
        return False
    mapped = COPY_TONE_TO_KNOB.get(tone.value)
    return mapped is not None and mapped != score.value


def _apply_tone(ctx: ScoringContext, score: KnobScore) -> None:
    tone = ctx.signals.copy_tone
    mapped = COPY_TONE_TO_KNOB[tone.value]
    score.apply(mapped, f"Mapped extracted tone '{tone.value}' to knob '{mapped}'", confidence=tone.confidence, lock=False)


COPY_TONE_RULES: List[Rule] = [
    Rule(
        "compliance_formal",
        lambda ctx, s: ctx.compliance and s.default != "compliance",
        lambda ctx, s: s.apply(
            "compliance",
            "Compliance signals found; shifting copy to formal tone",
            confidence=ctx.compliance_confidence,
        ),
    ),
    Rule("mapped_tone", _mapped_tone, _apply_tone),
]


# ---------------------------------------------------------------------------
# inviteStrategy
# ---------------------------------------------------------------------------

def _team_size_known(ctx: ScoringContext) -> bool:
    return ctx.signals.team_size_bracket.value != "unknown"


INVITE_RULES: List[Rule] = [
    Rule(
        "compliance_staged",
        lambda ctx, s: ctx.compliance,
        lambda ctx, s: s.apply(
            "staged",
            "Compliance cues present; staging invites until controls are ready",
            confidence=ctx.compliance_confidence,
        ),
    ),
    Rule(
        "solo_self_serve",
        lambda ctx, s: ctx.signals.team_size_bracket.value == "solo"
        and ctx.usable(ctx.signals.team_size_bracket.confidence, False),
        lambda ctx, s: s.apply(
            "self_serve",
            "Solo team detected; delaying invites until user opts in",
            confidence=ctx.signals.team_size_bracket.confidence,
        ),
    ),
    Rule(
        "multiple_deciders_staged",
        lambda ctx, s: ctx.primary_deciders > 1 and ctx.usable(ctx.signals.decision_makers.confidence, ctx.compliance),
        lambda ctx, s: s.apply(
            "staged",
            "Multiple decision makers detected; using staged invite rollout",
            confidence=ctx.signals.decision_makers.confidence,
        ),
    ),
    Rule(
        "team_immediate",
        lambda ctx, s: _team_size_known(ctx)
        and ctx.signals.team_size_bracket.value != "solo"
        and ctx.usable(ctx.signals.team_size_bracket.confidence, ctx.primary_deciders > 1),
        lambda ctx, s: s.apply(
            "immediate",
            "Team size implies collaboration; prompting immediate invites",
            confidence=ctx.signals.team_size_bracket.confidence,
        ),
    ),
    Rule(
        "client_stakeholders",
        lambda ctx, s: ctx.recipe_id == "R3" and s.value != "stakeholder_first",
        lambda ctx, s: s.apply("stakeholder_first", "Client recipe prioritises stakeholder invites first"),
    ),
]


# ---------------------------------------------------------------------------
# notificationCadence
# ---------------------------------------------------------------------------

def _timeline(ctx: ScoringContext) -> Optional[str]:
    return ctx.signals.constraints.value.timeline


def _team_tier(ctx: ScoringContext, score: KnobScore) -> None:
    bracket = ctx.signals.team_size_bracket
    tier = TEAM_SIZE_CADENCE.get(bracket.value)
    if tier is None:
        score.locked = True
        return
    score.apply(tier[0], tier[1], confidence=bracket.confidence)


CADENCE_RULES: List[Rule] = [
    Rule(
        "compliance_real_time",
        lambda ctx, s: ctx.compliance,
        lambda ctx, s: s.apply(
            "real_time",
            "Compliance focus detected; escalating to real-time notifications",
            confidence=ctx.compliance_confidence,
        ),
    ),
    Rule(
        "rush_timeline",
        lambda ctx, s: _timeline(ctx) == "rush" and ctx.usable(ctx.signals.constraints.confidence, True),
        lambda ctx, s: s.apply(
            "real_time",
            "Rush timeline requires real-time notifications",
            confidence=ctx.signals.constraints.confidence,
        ),
    ),
    Rule(
        "flexible_timeline",
        lambda ctx, s: _timeline(ctx) == "flexible" and ctx.usable(ctx.signals.constraints.confidence, False),
        lambda ctx, s: s.apply(
            "weekly",
            "Flexible timeline allows slower notification cadence",
            confidence=ctx.signals.constraints.confidence,
        ),
    ),
    Rule(
        "team_size_tier",
        lambda ctx, s: _team_size_known(ctx) and ctx.usable(ctx.signals.team_size_bracket.confidence, ctx.compliance),
        _team_tier,
    ),
]


# knob id -> (rules factory, "kept default" sentence)
def _cascade_for(recipe: CanvasRecipe, knob_id: str) -> Tuple[List[Rule], str]:
    if knob_id == "approvalChainLength":
        return (
            _approval_rules(recipe.knob(knob_id)),
            "Kept default ({default}) due to limited high-confidence signals.",
        )
    if knob_id == "integrationMode":
        return INTEGRATION_RULES, "Kept default ('{default}') with no strong integration signals."
    if knob_id == "copyTone":
        return COPY_TONE_RULES, "Kept default ('{default}') due to neutral or low-confidence tone."
    if knob_id == "inviteStrategy":
        return INVITE_RULES, "Kept default ('{default}') due to insufficient invite signals."
    if knob_id == "notificationCadence":
        return CADENCE_RULES, "Kept default ('{default}') due to limited cadence cues."
    return [], "No personalization rules defined; kept default value."


# ---------------------------------------------------------------------------
# Guardrails
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Conflict:
    reason: str
    detail: str
    confidences: Tuple[float, ...]


def detect_conflicts(ctx: ScoringContext) -> List[Conflict]:
    bar = ctx.thresholds.fallback
    signals = ctx.signals
    conflicts: List[Conflict] = []

    tone = signals.copy_tone
    if ctx.compliance and ctx.compliance_confidence >= bar and tone.value in FAST_TONES and tone.confidence >= bar:
        conflicts.append(
            Conflict(
                reason=CONFLICT_GOVERNANCE_VS_FAST,
                detail=f"Compliance signals conflict with a '{tone.value}' tone request",
                confidences=(ctx.compliance_confidence, tone.confidence),
            )
        )

    team = signals.team_size_bracket
    makers = signals.decision_makers
    if team.value == "solo" and team.confidence >= bar and ctx.primary_deciders > 1 and makers.confidence >= bar:
        conflicts.append(
            Conflict(
                reason=CONFLICT_SOLO_VS_TEAM,
                detail=f"Solo team size conflicts with {ctx.primary_deciders} primary decision makers",
                confidences=(team.confidence, makers.confidence),
            )
        )

    return conflicts


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def default_overrides(recipe_id: str, rationale: str) -> Dict[str, KnobOverride]:
    recipe = get_recipe(recipe_id)
    return {
        knob_id: KnobOverride(value=knob.default_value, rationale=rationale, changed_from_default=False)
        for knob_id, knob in recipe.knobs.items()
    }


def personalization_disabled_result(recipe_id: str) -> RecipePersonalizationResult:
    return RecipePersonalizationResult(
        recipe_id=recipe_id,
        overrides=default_overrides(recipe_id, "Personalization disabled; kept recipe default."),
        fallback=FallbackResult(applied=False, details=("Personalization disabled",)),
    )


def score_recipe_knobs(
    recipe_id: str,
    signals: PromptSignals,
    thresholds: ScoringThresholds = DEFAULT_THRESHOLDS,
) -> RecipePersonalizationResult:
    """
    Score every knob on `recipe_id` against `signals`.

    Always returns exactly one override per recipe knob. Values stay within
    the knob's domain; `fallback.applied` means every value is the default.
    """
    recipe = get_recipe(recipe_id)
    ctx = build_context(recipe_id, signals, thresholds)

    conflicts = detect_conflicts(ctx)
    if conflicts:
        details = tuple(c.detail for c in conflicts)
        aggregate = _mean([conf for c in conflicts for conf in c.confidences])
        logger.info(
            "Personalization fallback: %s",
            ", ".join(c.reason for c in conflicts),
            extra={"recipe_id": recipe_id, "step": "personalization"},
        )
        return RecipePersonalizationResult(
            recipe_id=recipe_id,
            overrides=default_overrides(
                recipe_id, f"Fallback guardrail: {'; '.join(details)}. Kept recipe default."
            ),
            fallback=FallbackResult(
                applied=True,
                reasons=tuple(c.reason for c in conflicts),
                details=details,
                aggregate_confidence=aggregate,
            ),
        )

    overrides: Dict[str, KnobOverride] = {}
    registered: List[float] = []
    for knob_id, definition in recipe.knobs.items():
        rules, keep_default = _cascade_for(recipe, knob_id)
        score = run_cascade(
            rules,
            ctx,
            KnobScore(default=definition.default_value, value=definition.default_value),
            keep_default,
        )
        if isinstance(definition, EnumKnob) and not definition.allows(score.value):
            # Unknown option: treat as no override.
            score = KnobScore(default=definition.default_value, value=definition.default_value)
            score.rationale.append(keep_default.format(default=definition.default_value))
        registered.extend(score.confidences)
        overrides[knob_id] = KnobOverride(
            value=score.value,
            rationale=". ".join(score.rationale),
            changed_from_default=score.changed,
        )

    aggregate = _mean(registered)
    if registered and aggregate < thresholds.fallback:
        detail = f"Aggregate confidence {aggregate:.2f} below {thresholds.fallback:.2f}"
        logger.info(
            "Personalization fallback: %s", INSUFFICIENT_CONFIDENCE,
            extra={"recipe_id": recipe_id, "step": "personalization"},
        )
        return RecipePersonalizationResult(
            recipe_id=recipe_id,
            overrides=default_overrides(recipe_id, f"Fallback guardrail: {detail}. Kept recipe default."),
            fallback=FallbackResult(
                applied=True,
                reasons=(INSUFFICIENT_CONFIDENCE,),
                details=(detail,),
                aggregate_confidence=aggregate,
            ),
        )

    changed = [k for k, o in overrides.items() if o.changed_from_default]
    logger.info(
        "Computed knob overrides (%d changed)",
        len(changed),
        extra={"recipe_id": recipe_id, "step": "personalization"},
    )
    return RecipePersonalizationResult(
        recipe_id=recipe_id,
        overrides=overrides,
        fallback=FallbackResult(applied=False, aggregate_confidence=aggregate),
    )
