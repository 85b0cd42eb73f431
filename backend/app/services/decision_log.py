# backend/app/services/decision_log.py
from __future__ import annotations

import json
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.config import get_settings
from .session_context import build_llm_user_context
from .session_store import SessionState

logger = logging.getLogger(__name__)

PROMPT_VERSION = "canvas-2024-11"

_write_lock = threading.Lock()


def _log_dir() -> Path:
    return Path(get_settings().DECISION_LOG_DIR)


def _append_jsonl(directory: Path, record: Dict[str, Any]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{record['createdAt'][:10]}.jsonl"
    line = json.dumps(record, default=str)
    with _write_lock, path.open("a", encoding="utf-8") as fh:
        fh.write(line + "\n")
    return path


def _plan_summary(plan: Dict[str, Any]) -> Dict[str, Any]:
    kind = plan.get("kind")
    if kind == "render_step":
        step = plan.get("step") or {}
        return {"stepId": step.get("stepId"), "fieldCount": len(step.get("fields") or [])}
    if kind == "review":
        return {"stepId": "review", "fieldCount": len(plan.get("summary") or [])}
    return {"stepId": kind, "fieldCount": 0}


def log_llm_decision(
    session: SessionState,
    *,
    plan: Dict[str, Any],
    metadata: Dict[str, Any],
    raw_response: str,
) -> None:
    """
    Best-effort, fire-and-forget writer for LLM plan decisions.
    Failure must NEVER break the plan request.
    """
    settings = get_settings()
    if not settings.DECISION_LOG_ENABLED:
        return

    try:
        created_at = datetime.now(timezone.utc).isoformat()
        record = {
            "decisionId": f"{session.id}-{int(time.time() * 1000)}-{secrets.token_hex(3)}",
            "sessionId": session.id,
            "createdAt": created_at,
            "promptVersion": PROMPT_VERSION,
            "modelName": settings.LLM_MODEL,
            "metadata": metadata,
            "plan": plan,
            "sessionContext": build_llm_user_context(session),
            "rawResponse": raw_response,
            "summary": _plan_summary(plan),
        }
        path = _append_jsonl(_log_dir(), record)
        logger.debug("Logged LLM decision to %s", path.name, extra={"session_id": session.id})
    except Exception:
        logger.exception("Failed to write LLM decision log", extra={"session_id": session.id})


def log_canvas_decision(
    *,
    message: str,
    recipe_id: str,
    persona: str,
    intent_tags: List[str],
    confidence: float,
    reasoning: str,
    decision_source: str,
    component_count: int,
    llm_confidence: Optional[float] = None,
    llm_raw_response: Optional[str] = None,
) -> None:
    """Best-effort writer for canvas classifier decisions."""
    settings = get_settings()
    if not settings.DECISION_LOG_ENABLED:
        return

    try:
        record = {
            "type": "canvas_decision",
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "promptVersion": PROMPT_VERSION,
            "modelName": settings.LLM_MODEL,
            "message": message,
            "recipeId": recipe_id,
            "persona": persona,
            "intentTags": intent_tags,
            "confidence": confidence,
            "reasoning": reasoning,
            "decisionSource": decision_source,
            "fallbackUsed": decision_source != "llm",
            "componentCount": component_count,
            "llmConfidence": llm_confidence,
            "llmRawResponse": llm_raw_response,
        }
        _append_jsonl(_log_dir() / "canvas", record)
    except Exception:
        logger.exception("Failed to write canvas decision log", extra={"recipe_id": recipe_id})
