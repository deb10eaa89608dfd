"""
JSON Extraction — recover one JSON value from a raw LLM response.

Search-grounded responses can't use a strict JSON output mode, so the model
often wraps its answer in a ```json fence and/or appends source commentary
after it. A whole-string ``json.loads`` fails on those, so the primary value
is isolated structurally: a bracket scan that knows about quoted strings and
backslash escapes, stopping at the first point where the opening bracket is
balanced again.
"""

import json
import logging
import re
from typing import Any, Optional, Union

from errors import ParseError
from utils import excerpt

logger = logging.getLogger(__name__)

# Whole response wrapped in a fence: ```json\n...\n```
_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)
# Just the opening fence line (fence closed somewhere before trailing commentary)
_OPEN_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n?")

_CLOSERS = {"[": "]", "{": "}"}


def find_value_end(text: str, start: int = 0) -> int:
    """Index of the bracket closing the value opened at ``text[start]``, or -1.

    Only the bracket pair matching ``text[start]`` is counted; brackets inside
    string literals are ignored.
    """
    opener = text[start]
    closer = _CLOSERS[opener]
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match and match.group(2):
        return match.group(2).strip()
    if cleaned.startswith("```"):
        # Fence closed before trailing commentary: drop the opener, the scan drops the rest
        return _OPEN_FENCE_RE.sub("", cleaned, count=1).strip()
    return cleaned


def isolate_json(response_text: str) -> str:
    """Return the substring holding the primary JSON value of ``response_text``.

    Raises:
        ValueError: if a value starts but its closing bracket never comes.
    """
    cleaned = _strip_fences(response_text or "")

    if cleaned and cleaned[0] in _CLOSERS:
        start = 0
    else:
        # Scalars or prose-prefixed answers: whole text first, then first bracket
        try:
            json.loads(cleaned)
            return cleaned
        except ValueError:
            pass
        positions = [p for p in (cleaned.find("["), cleaned.find("{")) if p != -1]
        if not positions:
            return cleaned
        start = min(positions)

    end = find_value_end(cleaned, start)
    if end == -1:
        raise ValueError("JSON value is not balanced (truncated response?)")
    return cleaned[start:end + 1]


def parse_json_response(
    response_text: str,
    context: str,
    expected: Optional[Union[type, tuple]] = None,
) -> Any:
    """Parse the primary JSON value out of an LLM response.

    Args:
        response_text: Raw model output
        context: Label used in error messages (e.g. "details for Acme")
        expected: Optional type (or tuple of types) the value must be

    Raises:
        ParseError: on invalid / unbalanced JSON or a shape mismatch.
    """
    raw = response_text or ""
    isolated = ""
    try:
        isolated = isolate_json(raw)
        data = json.loads(isolated)
    except ValueError as e:
        logger.warning(
            "Failed to parse JSON response for %s: %s | raw=\"%s\"",
            context, e, excerpt(raw, 200),
        )
        raise ParseError(
            f"Invalid JSON response received from AI for {context}. Raw: {excerpt(raw)}",
            context=context,
            raw_excerpt=excerpt(raw, 200),
            isolated_excerpt=excerpt(isolated, 200),
        ) from e

    if expected is not None and not isinstance(data, expected):
        logger.warning(
            "Unexpected JSON shape for %s: got %s", context, type(data).__name__,
        )
        raise ParseError(
            f"Unexpected JSON shape received from AI for {context}: got {type(data).__name__}. "
            f"Raw: {excerpt(raw)}",
            context=context,
            raw_excerpt=excerpt(raw, 200),
            isolated_excerpt=excerpt(isolated, 200),
        )
    return data
