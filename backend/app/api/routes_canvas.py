import asyncio
import logging
import math
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..core.config import get_settings
from ..schemas.canvas import CanvasPlanRequest, CanvasPlanResponse
from ..schemas.events import PromptSignalsExtractedEvent, utc_now_iso
from ..services.classifier import decide_canvas
from ..services.decision_log import log_canvas_decision
from ..services.personalization import personalization_disabled_result, score_recipe_knobs
from ..services.personalization_health import (
    can_process_request,
    is_personalization_enabled,
    track_failure,
    track_personalization_success,
)
from ..services.recipes import get_recipe
from ..services.session_store import SessionStore, get_session_store
from ..services.signals import build_prompt_signals, summarize_prompt_signals
from ..services.template_copy import generate_plan_copy
from .deps import verify_api_key

router = APIRouter(tags=["canvas"])
logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_FALLBACK_MS = 60_000


def _rate_limited_response(retry_after_ms):
    seconds = max(1, math.ceil((retry_after_ms or RATE_LIMIT_WINDOW_FALLBACK_MS) / 1000))
    return JSONResponse(
        status_code=429,
        content={"error": "Too many personalization attempts. Please retry shortly."},
        headers={"Retry-After": str(seconds)},
    )


@router.post("/canvas/plan", response_model=CanvasPlanResponse)
async def create_canvas_plan(
    payload: CanvasPlanRequest,
    store: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_api_key),
):
    request_id = str(uuid4())
    session_id = payload.session_id

    if session_id:
        rate_limit = can_process_request(session_id)
        if not rate_limit.allowed:
            logger.info(
                "Canvas plan rate limited",
                extra={"session_id": session_id, "request_id": request_id},
            )
            return _rate_limited_response(rate_limit.retry_after_ms)

    try:
        decision = await asyncio.to_thread(decide_canvas, payload.message, payload.classifier_context())
        recipe = get_recipe(decision.recipe_id)

        settings = get_settings()
        prompt_signals = await build_prompt_signals(
            payload.message, timeout_ms=settings.PERSONALIZATION_TIMEOUT_MS
        )
        if is_personalization_enabled():
            personalization = score_recipe_knobs(decision.recipe_id, prompt_signals)
        else:
            personalization = personalization_disabled_result(decision.recipe_id)

        template_copy = await asyncio.to_thread(
            generate_plan_copy,
            message=payload.message,
            recipe_id=decision.recipe_id,
            persona=decision.persona,
            signals=prompt_signals,
            overrides=personalization.overrides,
        )

        if session_id:
            event = PromptSignalsExtractedEvent(
                timestamp=utc_now_iso(),
                session_id=session_id,
                signals=summarize_prompt_signals(prompt_signals),
            )
            if store.update_session(session_id, prompt_signals=prompt_signals, event=event) is None:
                logger.info(
                    "No session found; prompt signals not persisted",
                    extra={"session_id": session_id, "request_id": request_id},
                )

        log_canvas_decision(
            message=payload.message,
            recipe_id=decision.recipe_id,
            persona=decision.persona,
            intent_tags=decision.intent_tags,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            decision_source=decision.decision_source,
            component_count=len(recipe.fields),
            llm_confidence=decision.llm_confidence,
            llm_raw_response=decision.llm_raw_response,
        )

        logger.info(
            "Canvas plan resolved",
            extra={
                "session_id": session_id,
                "request_id": request_id,
                "recipe_id": decision.recipe_id,
                "decision_source": decision.decision_source,
            },
        )
        track_personalization_success()

        return CanvasPlanResponse(
            recipe_id=decision.recipe_id,
            persona=decision.persona,
            intent_tags=decision.intent_tags,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            decision_source=decision.decision_source,
            prompt_signals=prompt_signals.to_dict(),
            personalization=personalization.to_dict(),
            template_copy=template_copy,
        )
    except Exception as e:
        logger.exception(
            "Canvas plan endpoint error: %s", e,
            extra={"session_id": session_id, "request_id": request_id},
        )
        track_failure()
        raise HTTPException(status_code=500, detail="Internal server error")
