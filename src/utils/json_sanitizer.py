"""pull json out of noisy text: model tool arguments and analysis-tool stdout"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def strip_code_fence(text: str) -> str:
    match = CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_span(text: str) -> Optional[str]:
    """substring from the first '{' to the last '}', or None"""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def clean_tool_output(text: str) -> str:
    """drop banner/progress lines around a json document; text without json is returned trimmed"""
    span = extract_json_span(text or "")
    return span if span is not None else (text or "").strip()


def try_parse_json(text: str) -> Optional[Any]:
    span = extract_json_span(text or "")
    if span is None:
        return None
    try:
        return json.loads(span)
    except json.JSONDecodeError:
        return None


def coerce_json_object(value: Any) -> Optional[Dict[str, Any]]:
    """
    Accept a dict, or a string holding one (optionally fenced, with trailing
    commas). Anything else yields None.
    """
    if isinstance(value, dict):
        return value
    if not isinstance(value, str):
        return None
    span = extract_json_span(strip_code_fence(value))
    if span is None:
        return None
    try:
        parsed = json.loads(TRAILING_COMMA.sub(r"\1", span))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
