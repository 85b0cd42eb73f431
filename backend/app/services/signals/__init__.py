from .types import (
    SIGNAL_KEYS,
    SIGNAL_LABELS,
    ConstraintSignal,
    DecisionMaker,
    PromptSignal,
    PromptSignals,
    PromptSignalsPartial,
    SignalMetadata,
    create_default_signals,
    format_signal_value,
    summarize_prompt_signals,
)
from .keywords import extract_signals_from_keywords
from .llm_parser import fetch_signals_from_llm, parse_signal_payload
from .merge import build_prompt_signals, merge_signals, values_equal
from .tools import TOOL_DEFINITIONS, TOOL_LOOKUP, normalize_tool_name

__all__ = [
    "SIGNAL_KEYS",
    "SIGNAL_LABELS",
    "TOOL_DEFINITIONS",
    "TOOL_LOOKUP",
    "ConstraintSignal",
    "DecisionMaker",
    "PromptSignal",
    "PromptSignals",
    "PromptSignalsPartial",
    "SignalMetadata",
    "build_prompt_signals",
    "create_default_signals",
    "extract_signals_from_keywords",
    "fetch_signals_from_llm",
    "format_signal_value",
    "merge_signals",
    "normalize_tool_name",
    "parse_signal_payload",
    "summarize_prompt_signals",
    "values_equal",
]
