from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from .form import STEP_IDS, CamelModel, FormPlan

PlanStrategy = Literal["auto", "llm", "rules"]


class SessionCreateRequest(CamelModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)
    initial_values: Dict[str, Any] = Field(default_factory=dict)


class SessionUpdateRequest(CamelModel):
    session_id: str = Field(min_length=1)
    values: Optional[Dict[str, Any]] = None
    current_step: Optional[str] = None
    add_completed_step: Optional[str] = None
    completed_steps: Optional[List[str]] = None

    @field_validator("current_step", "add_completed_step")
    @classmethod
    def _known_step(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in STEP_IDS:
            raise ValueError(f"Unknown step: {v}")
        return v


class PlanRequest(CamelModel):
    session_id: Optional[str] = None
    strategy: PlanStrategy = "auto"


class PlanResponse(CamelModel):
    plan: FormPlan
    source: Literal["llm", "rules", "fallback"]
    metadata: Optional[Dict[str, Any]] = None
