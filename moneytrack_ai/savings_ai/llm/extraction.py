"""
Recovers the tagged proposal payload from free model text.
What it does:
- Strict: regex for <tag>[...]</tag>, parsed as-is
- Loose: slice between the literal tags, strip markdown noise, parse [ .. ]
- Heuristic: scan the whole text for a JSON array carrying the proposal keys

The tiers stay separate so each one's miss shows up in the logs.
Nothing here raises: a miss is reported as found=False.
"""


import json
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from savings_ai.core.logging import get_logger
from savings_ai.llm.json_parse import remove_all_fences

log = get_logger("llm.extraction")

DEFAULT_REQUIRED_KEYS = ("category", "suggestedLimit")
MAX_HEURISTIC_CANDIDATES = 64


@dataclass
class ExtractionResult:
    proposals: list = field(default_factory=list)
    found: bool = False
    strategy: Optional[str] = None


def _clean_noise(content: str) -> str:
    content = remove_all_fences(content)
    content = re.sub(r"^\s*Note:.*$", "", content, flags=re.MULTILINE | re.IGNORECASE)
    content = re.sub(r"\*\*.*?\*\*", "", content)
    return content.strip()


def extract_strict(text: str, tag: str) -> Optional[list]:
    pattern = re.compile(
        rf"<{re.escape(tag)}>\s*(\[.*?\])\s*</{re.escape(tag)}>",
        flags=re.DOTALL | re.IGNORECASE,
    )
    m = pattern.search(text or "")
    if not m:
        log.info("strict: no tagged array found")
        return None
    try:
        parsed = json.loads(m.group(1).strip())
    except (ValueError, RecursionError) as e:
        log.info(f"strict: tagged block is not valid JSON: {e}")
        return None
    return parsed if isinstance(parsed, list) else None


def extract_loose(text: str, tag: str) -> Optional[list]:
    text = text or ""
    open_tag, close_tag = f"<{tag}>", f"</{tag}>"
    lower = text.lower()
    start = lower.find(open_tag.lower())
    if start == -1:
        log.info("loose: open tag not present")
        return None
    body_start = start + len(open_tag)
    end = lower.find(close_tag.lower(), body_start)
    # a model that stops before closing the tag still leaves a usable array
    content = text[body_start:end] if end != -1 else text[body_start:]

    content = _clean_noise(content)
    arr_start = content.find("[")
    arr_end = content.rfind("]")
    if arr_start == -1 or arr_end <= arr_start:
        log.info("loose: no array between tags")
        return None
    try:
        parsed = json.loads(content[arr_start : arr_end + 1])
    except (ValueError, RecursionError) as e:
        log.info(f"loose: sliced array is not valid JSON: {e}")
        return None
    return parsed if isinstance(parsed, list) else None


def _has_keys(items: list, required_keys: Sequence[str]) -> bool:
    return bool(items) and all(
        isinstance(item, dict) and all(k in item for k in required_keys) for item in items
    )


def extract_heuristic(
    text: str, required_keys: Sequence[str] = DEFAULT_REQUIRED_KEYS
) -> Optional[list]:
    text = remove_all_fences(text or "")
    decoder = json.JSONDecoder()
    pos = text.find("[")
    candidates = 0
    while pos != -1 and candidates < MAX_HEURISTIC_CANDIDATES:
        candidates += 1
        try:
            parsed, _ = decoder.raw_decode(text, pos)
        except (ValueError, RecursionError):
            parsed = None
        if isinstance(parsed, list) and _has_keys(parsed, required_keys):
            return parsed
        pos = text.find("[", pos + 1)
    log.info(f"heuristic: no array with keys {list(required_keys)}")
    return None


def extract(
    full_text: str, tag: str, required_keys: Sequence[str] = DEFAULT_REQUIRED_KEYS
) -> ExtractionResult:
    strategies: list[tuple[str, Callable[[], Optional[list]]]] = [
        ("strict", lambda: extract_strict(full_text, tag)),
        ("loose", lambda: extract_loose(full_text, tag)),
        ("heuristic", lambda: extract_heuristic(full_text, required_keys)),
    ]
    for name, run in strategies:
        proposals = run()
        if proposals is not None:
            log.info(f"Extracted {len(proposals)} proposals via {name} strategy")
            return ExtractionResult(proposals=proposals, found=True, strategy=name)

    log.warning("All payload extraction strategies failed")
    return ExtractionResult()


def strip_tagged_section(text: str, tag: str) -> str:
    """Remove the <tag>...</tag> block(s) so the advice reads as plain markdown."""
    pattern = re.compile(
        rf"<{re.escape(tag)}>.*?(?:</{re.escape(tag)}>|$)",
        flags=re.DOTALL | re.IGNORECASE,
    )
    return pattern.sub("", text or "").strip()


_MONTHLY_AMOUNT = re.compile(
    r"(\d[\d,.]*)\s*(?:VND|vnd|₫|đ|dong)?\s*(?:per month|a month|each month|/\s*month|monthly)",
    flags=re.IGNORECASE,
)


def _to_number(raw: str) -> Optional[float]:
    s = raw.strip().rstrip(".,")
    if s.count(".") > 1 or (re.search(r"\.\d{3}(?!\d)", s) and "," not in s):
        # 1.000.000 style thousands separators
        s = s.replace(".", "")
    s = s.replace(",", "")
    try:
        return float(s)
    except ValueError:
        return None


def parse_suggested_savings(text: str) -> Optional[float]:
    """First positive "<amount> per month" style figure in the advice, if any."""
    for m in _MONTHLY_AMOUNT.finditer(text or ""):
        value = _to_number(m.group(1))
        if value and value > 0:
            return value
    return None
