"""Recover a JSON object from model output.

Accepted forms, tried in order:

1. the whole response is a JSON object (surrounding whitespace ignored);
2. the first fenced code block (```json ... ``` or ``` ... ```) holds one;
3. the first balanced, top-level ``{ ... }`` span in the text is one.

Anything else raises :class:`JSONExtractionError`.
"""
from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)\n?```", re.DOTALL)


class JSONExtractionError(ValueError):
    pass


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def first_balanced_object(text: str) -> str | None:
    """Return the first brace-balanced span starting at the first ``{``.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    if start < 0:
        return None
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
                return text[start : index + 1]
    return None


def extract_json_object(raw_text: str) -> dict[str, Any]:
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise JSONExtractionError("empty response")

    direct = _loads_object(raw_text.strip())
    if direct is not None:
        return direct

    fence = _FENCE_RE.search(raw_text)
    if fence:
        fenced = _loads_object(fence.group(1).strip())
        if fenced is not None:
            return fenced

    span = first_balanced_object(raw_text)
    if span is not None:
        bare = _loads_object(span)
        if bare is not None:
            return bare

    raise JSONExtractionError(f"no JSON object found in response: {raw_text[:200]!r}")
