"""
Recover structured plan payloads from loosely-formatted LLM output.

Three stages, each usable on its own:

1. `extract_response_text` pulls the text out of whatever shape the provider
   returned (chat completion, responses API output, tool call arguments).
2. `parse_json_payload` parses it, normalizing JS-ish JSON when strict parsing
   fails (function-call wrappers, single quotes, bare keys, trailing commas).
3. `repair_plan_payload` coerces a parsed plan into the strict plan schema:
   synonyms are remapped, missing required values backfilled, and fields that
   cannot be salvaged dropped.
"""
from __future__ import annotations

import copy
import json
import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

from ..schemas.form import FIELD_ID_SET, STEP_IDS, STEP_LABELS
from .signals.tools import TOOL_IDS

logger = logging.getLogger(__name__)


class LLMResponseValidationError(Exception):
    """The LLM response could not be turned into a valid plan."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.match(text)
    return (match.group(1) if match else text).strip()


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _first(items: Any) -> Any:
    if isinstance(items, (list, tuple)) and items:
        return items[0]
    return None


def _message(response: Any) -> Any:
    return _get(_first(_get(response, "choices")), "message")


def _text_direct(response: Any) -> Optional[str]:
    content = _get(_message(response), "content")
    if isinstance(content, str):
        return content
    text = _get(response, "text")
    return text if isinstance(text, str) else None


def _text_output_text(response: Any) -> Optional[str]:
    value = _get(response, "output_text")
    return value if isinstance(value, str) else None


def _text_parsed(response: Any) -> Optional[str]:
    parsed = _get(_message(response), "parsed")
    if parsed is None:
        parsed = _get(response, "parsed")
    if parsed is None:
        return None
    if hasattr(parsed, "model_dump"):
        parsed = parsed.model_dump()
    if isinstance(parsed, (dict, list)):
        return json.dumps(parsed)
    return None


def _segment_text(segments: Any) -> Optional[str]:
    if not isinstance(segments, list):
        return None
    parts: List[str] = []
    for segment in segments:
        if isinstance(segment, str):
            parts.append(segment)
        else:
            text = _get(segment, "text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts) if parts else None


def _text_content_segments(response: Any) -> Optional[str]:
    return _segment_text(_get(_message(response), "content")) or _segment_text(_get(response, "content"))


def _text_tool_call(response: Any) -> Optional[str]:
    call = _first(_get(_message(response), "tool_calls"))
    arguments = _get(_get(call, "function"), "arguments")
    return arguments if isinstance(arguments, str) else None


def _text_output_messages(response: Any) -> Optional[str]:
    output = _get(response, "output")
    if not isinstance(output, list):
        return None
    for message in output:
        for item in _get(message, "content") or []:
            item_type = _get(item, "type")
            if item_type in ("output_text", "text"):
                text = _get(item, "text")
            elif item_type == "tool_call":
                text = _get(item, "arguments")
            else:
                continue
            if isinstance(text, str) and text.strip():
                return text
    return None


TEXT_EXTRACTORS: List[Callable[[Any], Optional[str]]] = [
    _text_direct,
    _text_output_text,
    _text_parsed,
    _text_content_segments,
    _text_tool_call,
    _text_output_messages,
]


def extract_response_text(response: Any) -> Optional[str]:
    """First non-empty text found by the extractor chain, fences stripped."""
    if isinstance(response, str):
        return strip_code_fences(response) or None
    for extractor in TEXT_EXTRACTORS:
        text = extractor(response)
        if text and text.strip():
            return strip_code_fences(text)
    return None


# ---------------------------------------------------------------------------
# JSON normalization
# ---------------------------------------------------------------------------

_WRAPPER_RE = re.compile(r"^\s*propose_next_step\s*\((.*)\)\s*;?\s*$", re.DOTALL)
_IDENT_START = re.compile(r"[A-Za-z_$]")
_IDENT_CHAR = re.compile(r"[A-Za-z0-9_$-]")


def _next_significant(text: str, index: int) -> str:
    while index < len(text) and text[index].isspace():
        index += 1
    return text[index] if index < len(text) else ""


def _read_single_quoted(text: str, index: int) -> tuple:
    """Read a '...' literal starting after the opening quote; returns (json_string, next_index)."""
    chars: List[str] = []
    while index < len(text):
        ch = text[index]
        if ch == "\\" and index + 1 < len(text):
            nxt = text[index + 1]
            chars.append("'" if nxt == "'" else "\\" + nxt)
            index += 2
            continue
        if ch == "'":
            return '"' + "".join(chars) + '"', index + 1
        chars.append('\\"' if ch == '"' else ch)
        index += 1
    raise ValueError("unterminated single-quoted string")


def normalize_json_text(text: str) -> str:
    """
    Rewrite JS-object-literal text into strict JSON.

    String-aware: content inside double-quoted strings is copied verbatim, so
    apostrophes there are never touched and valid JSON is returned unchanged.
    """
    match = _WRAPPER_RE.match(text)
    if match:
        text = match.group(1)
    text = text.strip()

    out: List[str] = []
    last_significant = ""
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch == '"':
            j = i + 1
            while j < n:
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == '"':
                    break
                j += 1
            out.append(text[i:j + 1])
            last_significant = '"'
            i = j + 1
            continue

        if ch == "'":
            literal, i = _read_single_quoted(text, i + 1)
            out.append(literal)
            last_significant = '"'
            continue

        if ch == ",":
            if _next_significant(text, i + 1) in ("}", "]"):
                i += 1
                continue
            out.append(ch)
            last_significant = ch
            i += 1
            continue

        if _IDENT_START.match(ch):
            j = i + 1
            while j < n and _IDENT_CHAR.match(text[j]):
                j += 1
            word = text[i:j]
            if last_significant in ("{", ",") and _next_significant(text, j) == ":":
                out.append(json.dumps(word))
            else:
                out.append(word)
            last_significant = "w"
            i = j
            continue

        out.append(ch)
        if not ch.isspace():
            last_significant = ch
        i += 1

    return "".join(out)


def parse_json_payload(text: str) -> Dict[str, Any]:
    """Parse LLM text as a JSON object, normalizing it when strict parsing fails."""
    if not text or not text.strip():
        raise LLMResponseValidationError("LLM response was empty")

    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as strict_error:
        try:
            payload = json.loads(normalize_json_text(cleaned))
        except (json.JSONDecodeError, ValueError) as e:
            logger.debug("JSON normalization failed: %s", e)
            raise LLMResponseValidationError("LLM response was not valid JSON", str(strict_error)) from e

    if not isinstance(payload, dict):
        raise LLMResponseValidationError("LLM response JSON is not an object", type(payload).__name__)
    return payload


# ---------------------------------------------------------------------------
# Plan repair
# ---------------------------------------------------------------------------

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "Generated by the onboarding planner."
DEFAULT_PRIMARY_CTA = {"label": "Continue", "action": "submit_step"}
CTA_ACTIONS = ("submit_step", "back", "skip", "complete")
DECISIONS = ("progress", "review", "fallback")
MAX_FIELDS = 6

PERSONA_SYNONYMS = {
    "explorer": "explorer",
    "solo": "explorer",
    "personal": "explorer",
    "individual": "explorer",
    "team": "team",
    "teams": "team",
    "collaborative": "team",
    "client": "team",
    "enterprise": "team",
}

FIELD_KINDS = (
    "text",
    "select",
    "radio",
    "checkbox",
    "integration_picker",
    "admin_toggle",
    "teammate_invite",
    "callout",
    "checklist",
    "info_badge",
    "ai_hint",
)
KIND_SYNONYMS = {
    "toggle": "checkbox",
    "switch": "checkbox",
    "boolean": "checkbox",
    "dropdown": "select",
    "combobox": "select",
    "multiselect": "select",
    "textarea": "text",
    "input": "text",
    "email": "text",
    "string": "text",
    "radio_group": "radio",
    "integrations": "integration_picker",
    "invite": "teammate_invite",
    "invites": "teammate_invite",
    "hint": "ai_hint",
    "badge": "info_badge",
    "note": "callout",
    "alert": "callout",
    "list": "checklist",
}
FIELD_ID_ALIASES = {
    "name": "full_name",
    "fullname": "full_name",
    "email_address": "email",
    "company_name": "company",
    "organization": "company",
    "job_role": "role",
    "workspace": "workspace_name",
    "teamsize": "team_size",
    "use_case": "primary_use",
    "integrations": "preferred_integrations",
    "tools": "preferred_integrations",
    "invites": "team_invites",
    "teammates": "team_invites",
    "checklist": "guided_checklist",
    "callout": "guided_callout",
    "hint": "ai_hint",
    "badge": "persona_info_badge",
    "admin": "admin_controls",
    "audit": "audit_logging",
    "permissions": "access_level",
}
OPTION_KINDS = ("select", "radio", "checkbox", "integration_picker", "admin_toggle")
SINGLE_VALUE_KINDS = ("text", "select", "radio", "admin_toggle")
TEXT_INPUT_TYPES = ("text", "email", "password", "tel", "url")
DEFAULT_INTEGRATION_OPTIONS = TOOL_IDS[:8]


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_CONFIDENCE
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _humanize(identifier: str) -> str:
    return identifier.replace("_", " ").strip().capitalize() or "Field"


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


def _repair_metadata(raw: Any, top_level: Dict[str, Any]) -> Dict[str, Any]:
    metadata = dict(raw) if isinstance(raw, dict) else {}
    # Some models put metadata keys beside stepConfig.
    for key in ("reasoning", "confidence", "persona", "decision"):
        if key not in metadata and key in top_level:
            metadata[key] = top_level[key]
    repaired: Dict[str, Any] = {
        "reasoning": (_non_empty_str(metadata.get("reasoning")) or DEFAULT_REASONING)[:280],
        "confidence": _coerce_confidence(metadata.get("confidence")),
    }

    persona = metadata.get("persona")
    if isinstance(persona, str):
        mapped = PERSONA_SYNONYMS.get(persona.strip().lower())
        if mapped:
            repaired["persona"] = mapped

    decision = metadata.get("decision")
    if isinstance(decision, str) and decision.strip().lower() in DECISIONS:
        repaired["decision"] = decision.strip().lower()
    return repaired


def _repair_cta(raw: Any) -> Optional[Dict[str, str]]:
    if not isinstance(raw, dict):
        return None
    label = _non_empty_str(raw.get("label"))
    action = raw.get("action")
    if label is None or action not in CTA_ACTIONS:
        return None
    return {"label": label[:40], "action": action}


def _repair_options(raw: Any) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(raw, list):
        return None
    options: List[Dict[str, Any]] = []
    for item in raw:
        if isinstance(item, str) and item.strip():
            options.append({"value": item.strip()[:100], "label": item.strip()[:100]})
        elif isinstance(item, dict):
            value = _non_empty_str(item.get("value")) or _non_empty_str(item.get("label"))
            label = _non_empty_str(item.get("label")) or value
            if value is None:
                continue
            option = {**item, "value": value[:100], "label": label[:100]}
            options.append(option)
    return options


def _list_of(raw: Any) -> List[Any]:
    return raw if isinstance(raw, list) else []


def _string_list(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    return [item.strip() for item in raw if isinstance(item, str) and item.strip()]


def _repair_field_id(raw: Dict[str, Any]) -> Optional[str]:
    candidate = raw.get("id") or raw.get("fieldId") or raw.get("field_id")
    if not isinstance(candidate, str):
        return None
    field_id = _slug(candidate)
    field_id = FIELD_ID_ALIASES.get(field_id, field_id)
    return field_id if field_id in FIELD_ID_SET else None


def _repair_field(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    field = dict(raw)

    field_id = _repair_field_id(field)
    if field_id is None:
        logger.debug("Dropping field with unknown id: %r", raw.get("id"))
        return None
    field.pop("fieldId", None)
    field.pop("field_id", None)
    field["id"] = field_id

    kind = field.get("kind")
    if not isinstance(kind, str) and isinstance(field.get("type"), str) and field["type"] not in TEXT_INPUT_TYPES:
        kind = field.pop("type")
    kind = kind.strip().lower() if isinstance(kind, str) else ""
    kind = KIND_SYNONYMS.get(kind, kind)
    if kind not in FIELD_KINDS:
        kind = "text"
    field["kind"] = kind

    label = _non_empty_str(field.get("label")) or _non_empty_str(field.get("title")) or _humanize(field_id)
    field["label"] = label[:60]
    field.pop("title", None)

    if "helper_text" in field and "helperText" not in field:
        field["helperText"] = field.pop("helper_text")
    if field.get("helperText") is not None:
        helper = _non_empty_str(field["helperText"])
        if helper:
            field["helperText"] = helper[:160]
        else:
            field.pop("helperText")

    if kind in SINGLE_VALUE_KINDS and "defaultValue" not in field:
        value = field.pop("value", None)
        if isinstance(value, str) and value:
            field["defaultValue"] = value

    if kind == "checkbox" and "defaultValues" not in field:
        values = _string_list(field.pop("values", None))
        if values:
            field["defaultValues"] = values

    if kind in OPTION_KINDS:
        options = _repair_options(field.get("options"))
        if kind == "integration_picker":
            values = _string_list(field.get("values"))
            if not options:
                source = values or list(DEFAULT_INTEGRATION_OPTIONS)
                options = [{"value": v, "label": v} for v in source]
            if values:
                field["values"] = values[:12]
            else:
                field.pop("values", None)
        if not options:
            return None
        field["options"] = options

    if kind == "teammate_invite":
        invites = field.pop("invites", None)
        raw_values = field.get("values") if field.get("values") is not None else invites
        emails: List[str] = []
        for item in _list_of(raw_values):
            email = item.get("email") if isinstance(item, dict) else item
            if isinstance(email, str) and "@" in email:
                emails.append(email.strip())
        if emails:
            field["values"] = emails[:20]
        else:
            field.pop("values", None)

    if kind in ("callout", "ai_hint"):
        body = _non_empty_str(field.get("body")) or _non_empty_str(field.get("text")) or _non_empty_str(
            field.get("message")
        )
        field["body"] = (body or field["label"])[: 280 if kind == "callout" else 200]
        field.pop("text", None)
        field.pop("message", None)

    if kind == "checklist":
        items: List[Dict[str, Any]] = []
        for item in _list_of(field.get("items")):
            if isinstance(item, str) and item.strip():
                items.append({"id": _slug(item)[:60] or f"item_{len(items) + 1}", "label": item.strip()[:160]})
            elif isinstance(item, dict) and _non_empty_str(item.get("label")):
                items.append({**item, "id": str(item.get("id") or _slug(item["label"]))[:60]})
        if not items:
            return None
        field["items"] = items[:6]

    return field


def _repair_step_config(raw: Any) -> Dict[str, Any]:
    step = dict(raw) if isinstance(raw, dict) else {}

    step_id = step.get("stepId")
    if not isinstance(step_id, str) or not step_id.strip():
        for key in ("step_id", "id", "step"):
            if isinstance(step.get(key), str) and step[key].strip():
                step_id = step[key]
                break
        else:
            step_id = "workspace"
    step_id = step_id.strip().lower()
    for key in ("step_id", "id", "step"):
        step.pop(key, None)
    step["stepId"] = step_id

    title = _non_empty_str(step.get("title")) or _non_empty_str(step.get("name")) or _non_empty_str(
        step.get("heading")
    )
    step["title"] = (title or STEP_LABELS.get(step_id, "Workspace"))[:60]
    step.pop("name", None)
    step.pop("heading", None)

    description = _non_empty_str(step.get("description"))
    if description:
        step["description"] = description[:160]
    else:
        step.pop("description", None)

    primary_alias = step.pop("primary_cta", None)
    secondary_alias = step.pop("secondary_cta", None)
    step["primaryCta"] = _repair_cta(step.get("primaryCta") or primary_alias) or dict(DEFAULT_PRIMARY_CTA)
    secondary = _repair_cta(step.get("secondaryCta") or secondary_alias)
    if secondary:
        step["secondaryCta"] = secondary
    else:
        step.pop("secondaryCta", None)

    fields = [f for f in (_repair_field(item) for item in _list_of(step.get("fields"))) if f is not None]
    step["fields"] = fields[:MAX_FIELDS]

    skip = step.pop("skip_to_review", step.get("skipToReview"))
    if isinstance(skip, bool):
        step["skipToReview"] = skip
    else:
        step.pop("skipToReview", None)
    return step


def repair_plan_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a repaired copy of an LLM plan payload; the input is not mutated.

    Only `metadata` and `stepConfig` survive at the top level.
    """
    source = copy.deepcopy(payload) if isinstance(payload, dict) else {}
    step_config = source.get("stepConfig")
    if step_config is None:
        step_config = source.get("step_config") or source.get("step")

    repaired = {
        "metadata": _repair_metadata(source.get("metadata"), source),
        "stepConfig": _repair_step_config(step_config),
    }

    if repaired["stepConfig"]["stepId"] not in STEP_IDS:
        logger.debug("Repaired plan references unknown step %r", repaired["stepConfig"]["stepId"])
    return repaired
