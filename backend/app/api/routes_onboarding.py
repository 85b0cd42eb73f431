import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from ..core.config import get_settings, llm_api_key_configured
from ..schemas.events import MAX_EVENTS_PER_BATCH, EventBatch, analyze_events, utc_now_iso
from ..schemas.session import PlanRequest, PlanResponse, SessionCreateRequest, SessionUpdateRequest
from ..services.planner import generate_plan_with_llm
from ..services.rules import get_next_step_plan
from ..services.session_store import SessionStore, get_session_store
from .deps import verify_api_key

router = APIRouter(tags=["onboarding"])
logger = logging.getLogger(__name__)


def _require_session(store: SessionStore, session_id: str):
    session = store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("/sessions", status_code=201)
def create_session(
    payload: Optional[SessionCreateRequest] = None,
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    payload = payload or SessionCreateRequest()
    session = store.create_session(metadata=payload.metadata, initial_values=payload.initial_values)
    logger.info("Session created", extra={"session_id": session.id, "step": "create_session"})
    return {"sessionId": session.id, "session": session.to_dict()}


@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    return {"session": _require_session(store, session_id).to_dict()}


@router.put("/sessions")
def update_session(
    payload: SessionUpdateRequest,
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    _require_session(store, payload.session_id)

    for step_id in payload.completed_steps or []:
        store.update_session(payload.session_id, add_completed_step=step_id)
    session = store.update_session(
        payload.session_id,
        values=payload.values,
        current_step=payload.current_step,
        add_completed_step=payload.add_completed_step,
    )
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session": session.to_dict()}


def _use_llm_planner(strategy: str) -> bool:
    if strategy == "rules":
        return False
    if strategy == "llm":
        return True
    return get_settings().ENABLE_LLM_PLANNER and llm_api_key_configured()


@router.post("/plan", response_model=PlanResponse, response_model_exclude_none=True)
def create_plan(
    payload: PlanRequest,
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    if not payload.session_id:
        raise HTTPException(status_code=400, detail="Session ID is required")

    session = _require_session(store, payload.session_id)

    if _use_llm_planner(payload.strategy):
        result = generate_plan_with_llm(session)
        if result is not None:
            return PlanResponse(
                plan=result.plan,
                source="llm",
                metadata=result.metadata.model_dump(exclude_none=True),
            )
        source = "fallback"
    else:
        source = "rules"

    plan = get_next_step_plan(session)
    if plan is None:
        logger.warning("No plan for session", extra={"session_id": session.id, "decision_source": source})
        raise HTTPException(status_code=500, detail="Unable to determine next step")

    logger.info(
        "Generated %s plan", plan.kind,
        extra={"session_id": session.id, "decision_source": source},
    )
    return PlanResponse(plan=plan, source=source)


@router.post("/events")
def ingest_events(
    body: Any = Body(None),
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    try:
        batch = EventBatch.model_validate(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid event payload",
                "details": jsonable_encoder(e.errors(include_url=False, include_context=False)),
            },
        )

    _require_session(store, batch.session_id)

    accepted = store.add_events(batch.session_id, batch.events[:MAX_EVENTS_PER_BATCH])
    logger.debug(
        "Accepted %d telemetry events",
        accepted,
        extra={"session_id": batch.session_id, "step": "events"},
    )

    insights = analyze_events(store.get_events(batch.session_id))
    return {
        "acceptedCount": accepted,
        "receivedAt": utc_now_iso(),
        "insights": insights.to_wire(),
    }
