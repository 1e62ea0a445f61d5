"""Recover a structured JSON payload from free-form reviewer output.

Reviewer programs are asked to answer with a single JSON object, but the text
they emit often carries prose, markdown fences or code snippets around it.
The strategies below are tried in order and the first one producing a JSON
object or array wins.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

from pair_review.analysis.constants import PREVIEW_LENGTH
from pair_review.analysis.contracts import ExtractionResult

logger = logging.getLogger(__name__)

# Top-level keys of the payloads reviewers are asked to produce. Used to find
# the real start of the object when prose before it contains braces.
ANCHOR_KEYS = (
    "level",
    "suggestions",
    "fileLevelSuggestions",
    "summary",
    "orchestratedSuggestions",
)

MAX_FORWARD_CANDIDATES = 20

_JSON_FENCE = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[\w-]*\s*\n(.*?)\n\s*```", re.DOTALL)
_ANCHOR = re.compile(
    r"\{\s*\"(?:" + "|".join(re.escape(key) for key in ANCHOR_KEYS) + r")\"\s*:"
)


def _loads(text: str) -> Any:
    return json.loads(text)


def _from_fenced_block(text: str) -> Any:
    match = _JSON_FENCE.search(text) or _ANY_FENCE.search(text)
    if not match:
        return None
    content = match.group(1).strip()
    if content.startswith("{") and content.endswith("}"):
        return _loads(content)
    return None


def _from_whole_text(text: str) -> Any:
    return _loads(text.strip())


def _from_brace_span(text: str) -> Any:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last < first:
        return None
    return _loads(text[first : last + 1])


def _from_anchor(text: str) -> Any:
    match = _ANCHOR.search(text)
    if not match:
        return None
    last = text.rfind("}")
    if last < match.start():
        return None
    return _loads(text[match.start() : last + 1])


def _from_forward_scan(text: str) -> Any:
    last = text.rfind("}")
    if last == -1:
        return None

    start = text.find("{")
    attempts = 0
    while start != -1 and start < last and attempts < MAX_FORWARD_CANDIDATES:
        attempts += 1
        try:
            data = _loads(text[start : last + 1])
            if isinstance(data, (dict, list)):
                return data
        except ValueError:
            pass
        start = text.find("{", start + 1)
    return None


def find_object_end(text: str, start: int) -> int:
    """Find the index of the brace closing the object opened at ``start``.

    Characters inside double-quoted strings (honoring backslash escapes) do
    not count towards nesting.

    Returns:
        Index of the matching closing brace, or -1 if the object never closes
    """
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _from_bracket_depth(text: str) -> Any:
    start = text.find("{")
    if start == -1:
        return None
    end = find_object_end(text, start)
    if end == -1:
        return None
    return _loads(text[start : end + 1])


STRATEGIES: List[Tuple[str, Callable[[str], Any]]] = [
    ("fenced_block", _from_fenced_block),
    ("whole_text", _from_whole_text),
    ("brace_span", _from_brace_span),
    ("anchored_key", _from_anchor),
    ("forward_scan", _from_forward_scan),
    ("bracket_depth", _from_bracket_depth),
]


def extract_json(response: Optional[str], level: str = "unknown") -> ExtractionResult:
    """Extract one JSON object from a text response.

    Args:
        response: Raw response text
        level: Level label used in log messages

    Returns:
        ExtractionResult with ``data`` on success, or ``error`` and a bounded
        ``preview`` of the input on failure. Never raises.
    """
    prefix = f"[Level {level}]"

    if not response or not response.strip():
        return ExtractionResult(success=False, error="Empty response", preview="")

    for name, strategy in STRATEGIES:
        try:
            data = strategy(response)
        except (ValueError, RecursionError):
            continue
        if isinstance(data, (dict, list)):
            logger.debug(f"{prefix} JSON extraction succeeded using strategy '{name}'")
            return ExtractionResult(success=True, data=data, strategy=name)

    preview = response[:PREVIEW_LENGTH]
    logger.warning(f"{prefix} All JSON extraction strategies failed")
    logger.debug(f"{prefix} Response preview: {preview[:200]}...")
    return ExtractionResult(
        success=False,
        error="Failed to extract JSON from response",
        preview=preview,
    )
