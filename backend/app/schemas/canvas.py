from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from .form import CamelModel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

DomainEmail = Annotated[str, StringConstraints(pattern=EMAIL_PATTERN)]
SessionId = Annotated[str, StringConstraints(min_length=1)]


class CanvasPlanRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    message: str
    domain_email: Optional[DomainEmail] = None
    team_size: Optional[Union[int, str]] = None
    metadata: Optional[Dict[str, Any]] = None
    session_id: Optional[SessionId] = None

    @field_validator("message", mode="before")
    @classmethod
    def _trim_message(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("Message is required")
        return v

    @field_validator("team_size", mode="before")
    @classmethod
    def _reject_bool(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("teamSize must be a string or number")
        return v

    def classifier_context(self) -> Dict[str, Any]:
        return {
            "domain_email": self.domain_email,
            "team_size": str(self.team_size) if self.team_size not in (None, "") else None,
            "metadata": self.metadata,
        }


class SlotIssue(CamelModel):
    slot_id: str
    reason: str
    severity: Literal["info", "warning", "error"] = "warning"


class CopyCallout(CamelModel):
    heading: Optional[str] = None
    body: str


class TemplateCopy(CamelModel):
    step_title: str
    helper_text: str
    primary_cta: str
    callout: CopyCallout
    badge_caption: str
    issues: List[SlotIssue] = Field(default_factory=list)


class CanvasPlanResponse(CamelModel):
    recipe_id: str
    persona: Literal["explorer", "team", "power"]
    intent_tags: List[str]
    confidence: float
    reasoning: str
    decision_source: Literal["llm", "heuristics"]
    prompt_signals: Dict[str, Any]
    personalization: Dict[str, Any]
    template_copy: TemplateCopy
