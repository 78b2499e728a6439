import json
import re
from typing import Any

_FENCE_OPEN = re.compile(r"```[a-zA-Z0-9]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```")


def strip_code_fences(s: str) -> str:
    s = (s or "").strip()
    # remove ```json ... ``` or ``` ... ```
    if s.startswith("```"):
        s = re.sub(r"^```[a-zA-Z0-9]*\s*", "", s)
        s = re.sub(r"\s*```$", "", s)
    return s.strip()


def remove_all_fences(s: str) -> str:
    """Drop every fence marker, including ones in the middle of prose."""
    s = _FENCE_OPEN.sub("", s or "")
    return _FENCE_CLOSE.sub("", s)


def extract_json_object(text: str) -> dict:
    """
    Parse tool-call arguments. Empty text means no arguments.
    Tolerates code fences and trailing garbage after the last brace.
    Raises ValueError when no JSON object can be recovered.
    """
    candidate = strip_code_fences(text)
    if not candidate:
        return {}
    if not candidate.startswith("{"):
        start = candidate.find("{")
        if start == -1:
            raise ValueError("No JSON object found in text")
        candidate = candidate[start:]
    try:
        parsed: Any = json.loads(candidate)
    except json.JSONDecodeError:
        last = candidate.rfind("}")
        if last == -1:
            raise
        parsed = json.loads(candidate[: last + 1])
    if not isinstance(parsed, dict):
        raise ValueError(f"JSON is not an object (got {type(parsed).__name__})")
    return parsed
