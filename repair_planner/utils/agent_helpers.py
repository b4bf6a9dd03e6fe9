# repair_planner/utils/agent_helpers.py
from __future__ import annotations

import math
import re
from typing import Any

_FENCE = "```"
_FENCE_TRIM = "`\n\r \t"
_STRAY_TRIM = "`\u200b"
# fence info string such as ```json, only when directly followed by the payload
_LANG_TAG = re.compile(r"^[A-Za-z][\w.+-]*\s*(?=[\[{])")


def extract_json_from_agent(text: str | None) -> str:
    """
    Isolate the JSON payload from free-form agent output.
    - Fenced block wins: the text strictly between the first and last ``` marker,
      minus a leading info tag (```json).
    - Otherwise stray backticks/zero-width spaces are stripped and the span from the
      first '{' or '[' to the last '}' or ']' is returned.
    - When no span is found the trimmed text comes back unchanged, so the
      deserializer is the one that reports the failure.
    Best-effort heuristic, not a JSON parser.
    """
    if not text or not text.strip():
        return ""
    t = text.strip()

    if _FENCE in t:
        first = t.find(_FENCE)
        last = t.rfind(_FENCE)
        if first != -1 and last > first:
            inner = t[first + len(_FENCE):last].strip()
            inner = _LANG_TAG.sub("", inner.strip(_FENCE_TRIM), count=1)
            return inner.strip(_FENCE_TRIM)

    t = t.strip(_STRAY_TRIM)

    first_brace = t.find("{")
    first_bracket = t.find("[")
    if first_brace >= 0 and (first_bracket == -1 or first_brace <= first_bracket):
        start = first_brace
    elif first_bracket >= 0:
        start = first_bracket
    else:
        return t

    end = max(t.rfind("}"), t.rfind("]"))
    if end > start:
        return t[start:end + 1].strip()
    return t


def _round_finite(number: float) -> Any:
    # inf and nan have no int form; leave them for the model to reject
    return int(round(number)) if math.isfinite(number) else None


def to_int_lenient(value: Any) -> Any:
    """
    Coerce numeric-looking input to int: 60, 60.0, "60", " 45 ", "30.0".
    Anything else, non-finite numbers included, is passed through untouched
    for the model to reject.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        rounded = _round_finite(value)
        return value if rounded is None else rounded
    if isinstance(value, str):
        s = value.strip()
        try:
            return int(s)
        except ValueError:
            pass
        try:
            rounded = _round_finite(float(s))
        except ValueError:
            return value
        return value if rounded is None else rounded
    return value


def to_str_list(value: Any) -> Any:
    """Accept "a, b" as well as ["a", "b"] for list-of-string fields."""
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def match_keys_case_insensitive(data: Any, names: dict[str, str]) -> Any:
    """
    Rename mapping keys onto canonical field names ignoring case.
    Keys that carry null are dropped so field defaults apply.
    """
    if not isinstance(data, dict):
        return data
    out: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        canonical = names.get(str(key).lower(), key)
        out[canonical] = value
    return out
