"""
Extraction of JSON payloads from free-text model answers.

Text-family providers are asked to answer with a JSON object, optionally wrapped in a
``<json>...</json>`` tag.  Models still occasionally add prose, markdown fences or control characters,
so the answer goes through three steps:

1. take the delimited segment if one is present (tag first, then a fenced code block);
2. otherwise cut the outermost balanced ``{...}`` object out of the text;
3. ``json.loads`` the result.
"""

import json
import re
from typing import (
    Any,
    Dict,
    Tuple,
)

_TAG_RE = re.compile(r"<json>\s*(.+?)\s*</json>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)
_QUOTE = '"'


class JSONExtractionError(ValueError):
    """Raised when no JSON object can be recovered from a response."""


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
def _skip_string(s: str, i: int) -> int:
    """Given s[i] == '"', return index just past the closing quote, honouring escapes."""
    i += 1
    esc = False
    while i < len(s):
        ch = s[i]
        if esc:
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == _QUOTE:
            return i + 1
        i += 1
    raise JSONExtractionError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        elif ch == _QUOTE:
            i = _skip_string(s, i)  # skip over quoted section
            continue
        i += 1
    raise JSONExtractionError("unbalanced braces")


def delimited_segment(content: str) -> Tuple[str, bool]:
    """Return ``(segment, found)`` for the first ``<json>`` tag or fenced block in *content*."""
    for pattern in (_TAG_RE, _FENCE_RE):
        match = pattern.search(content)
        if match:
            return match.group(1).strip(), True
    return content.strip(), False


def sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    content, _ = delimited_segment(content)

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    open_idx = content.find("{")
    if open_idx > 0 or (open_idx == 0 and not content.rstrip().endswith("}")):
        content = content[open_idx : _find_matching_brace(content, open_idx)]
    return content


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def extract_json_object(content: str) -> Dict[str, Any]:
    """
    Parse the JSON object contained in a model answer.

    Raises
    ------
    JSONExtractionError
        If the text holds no parseable JSON object.
    """
    if not content or not content.strip():
        raise JSONExtractionError("empty response")

    cleaned = sanitize_json_string(content)
    try:
        parsed: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise JSONExtractionError(f"invalid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise JSONExtractionError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
