"""
Parsing of structured JSON payloads embedded in model output.

Chat models asked for JSON frequently wrap it in prose or Markdown code
fences, e.g.::

    Claro, aquí está:
    ```json
    {"category": "payroll", "urgency": "high"}
    ```

The helpers below locate the JSON object with a string-aware brace scan,
so braces inside quoted values do not confuse extraction.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Optional, Tuple

from ..core.models import Classification
from ..logging_config import get_logger

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"\s*```(?:json|JSON)?\s*")


def _extract_json_object(text: str, start_index: int) -> Optional[Tuple[str, int, int]]:
    """
    Extract the first JSON object starting at or after start_index.

    Returns (json_string, start_index, end_index_exclusive) or None.
    """
    if not text:
        return None
    n = len(text)
    i = start_index
    while i < n and text[i] != "{":
        i += 1
    if i >= n:
        return None

    depth = 0
    in_string = False
    escape = False
    for j in range(i, n):
        ch = text[j]
        if in_string:
            if escape:
                escape = False
                continue
            if ch == "\\":
                escape = True
                continue
            if ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            continue
        if ch == "{":
            depth += 1
            continue
        if ch == "}":
            depth -= 1
            if depth == 0:
                return text[i : j + 1], i, j + 1

    return None


def _iter_json_objects(text: str) -> Iterable[Tuple[Dict[str, Any], int, int]]:
    index = 0
    while True:
        extracted = _extract_json_object(text, index)
        if not extracted:
            return
        json_str, start, end = extracted
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError:
            # Not JSON; keep scanning after the opening brace
            index = start + 1
            continue
        if isinstance(data, dict):
            yield data, start, end
        index = end


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub(" ", text or "").strip()


def extract_payload(text: str) -> Optional[Dict[str, Any]]:
    """Return the last JSON object found in the text, or None."""
    found = None
    for data, _start, _end in _iter_json_objects(strip_code_fences(text)):
        found = data
    return found


def split_structured_tail(text: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Split a reply into (spoken_text, payload).

    The payload is the last JSON object in the reply; it and any code fence
    around it are removed from the spoken text.
    """
    cleaned = strip_code_fences(text)
    last = None
    for data, start, end in _iter_json_objects(cleaned):
        last = (data, start, end)
    if last is None:
        return cleaned, None
    data, start, end = last
    spoken = (cleaned[:start] + " " + cleaned[end:]).strip()
    return " ".join(spoken.split()), data


def _pick(value: Any, allowed: Iterable[str], default: str) -> str:
    if not isinstance(value, str):
        return default
    candidate = value.strip().lower().replace(" ", "_").replace("-", "_")
    for option in allowed:
        if candidate == option.lower():
            return option
    return default


def parse_classification(
    text: str,
    *,
    categories: Iterable[str],
    urgencies: Iterable[str],
    default_category: str,
    default_urgency: str,
) -> Classification:
    """
    Parse {"category", "urgency"} from model output.

    Missing, malformed or out-of-vocabulary values are replaced by the
    defaults, so this never raises.
    """
    payload = extract_payload(text or "") or {}
    category = _pick(payload.get("category"), list(categories), default_category)
    urgency = _pick(payload.get("urgency"), list(urgencies), default_urgency)
    if not payload:
        logger.warning("Classification output had no JSON object; using defaults", preview=(text or "")[:80])
    return Classification(category=category, urgency=urgency)
