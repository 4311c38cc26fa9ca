"""Salvage a JSON payload from free-form model output.

Model responses are expected to carry one JSON object or array, but they
regularly arrive wrapped in prose, inside a markdown ``json`` fence, followed
by commentary, or with trailing commas. :func:`repair_json` narrows the text
down to the top-level structure; :func:`parse_json_response` decodes it and
raises :class:`MalformedClassifierResponse` when that still fails.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import MalformedClassifierResponse

LOGGER = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")

_CLOSERS = {"{": "}", "[": "]"}


def _unfence(text: str) -> str:
    match = _FENCED_JSON.search(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def _find_start(text: str) -> int:
    brace = text.find("{")
    bracket = text.find("[")
    if bracket != -1 and (brace == -1 or bracket < brace):
        return bracket
    return brace


def _find_balanced_end(text: str, start: int) -> int:
    """Index of the character closing the structure opened at ``start``.

    Only the opener's own bracket pair is counted. Brackets inside double
    quoted strings are ignored and a backslash escapes the next character.
    Returns -1 when the structure never closes.
    """

    opener = text[start]
    closer = _CLOSERS[opener]
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
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
    return -1


def strip_trailing_commas(text: str) -> str:
    """Drop commas directly followed (modulo whitespace) by ``}`` or ``]``.

    String literals are copied verbatim so valid JSON passes through intact.
    """

    out: list[str] = []
    in_string = False
    escaped = False
    pending_comma: int | None = None

    for char in text:
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char in "}]" and pending_comma is not None:
            del out[pending_comma]
            pending_comma = None
        elif not char.isspace():
            pending_comma = None

        if char == ",":
            pending_comma = len(out)
        elif char == '"':
            in_string = True
        out.append(char)

    return "".join(out)


def repair_json(raw: str) -> str:
    text = _unfence(raw.strip())

    start = _find_start(text)
    if start == -1:
        # Nothing that looks like JSON; let the decoder report it.
        return text

    end = _find_balanced_end(text, start)
    if end == -1:
        last_closer = text.rfind(_CLOSERS[text[start]])
        if last_closer > start:
            text = text[start : last_closer + 1]
        else:
            text = text[start:]
    else:
        text = text[start : end + 1]

    return strip_trailing_commas(text)


def parse_json_response(raw: str, *, context: str = "classifier response") -> Any:
    """Repair and decode ``raw``; the raw text is kept on failure."""

    repaired = ""
    try:
        repaired = repair_json(raw)
        return json.loads(repaired)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Could not decode %s after repair: %s", context, exc)
        raise MalformedClassifierResponse(
            f"The {context} is not valid JSON and could not be repaired automatically ({exc.msg}).",
            raw_response=raw,
            repaired_attempt=repaired,
        ) from exc
