"""
Extract a JSON object embedded in free-form model output.

Model replies sometimes wrap the object in prose or a markdown fence.  The
scanner tracks string literals and escapes so braces inside strings do not
affect nesting, and returns the first balanced ``{...}`` span that decodes
to a JSON object.
"""

from __future__ import annotations

import json
from typing import Optional


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index one past the brace closing the object opened at *start*, or None."""
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
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def extract_json_object(text: Optional[str]) -> dict:
    """
    Return the first JSON object found in *text*, or ``{}``.

    Never raises: empty input, unbalanced braces and undecodable spans all
    yield an empty dict.
    """
    if not text:
        return {}
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            try:
                value = json.loads(text[start:end])
            except ValueError:
                value = None
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return {}
