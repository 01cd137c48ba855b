"""
Turn raw model text into a digest object.

Models wrap JSON in code fences, prefix it with prose, or get cut off at the
output-token cap. ``parse_digest_response`` tolerates all three; text that
already parses is returned untouched and only a failed parse goes through
``repair_truncated_json``.
"""

import json
import logging
import re
from typing import Any, Dict, List, Tuple

from homedigest.app.errors import MalformedResponseError

logger = logging.getLogger("homedigest.normalizer")

DEFAULT_SUMMARY = "Daily Digest generated"

NORMAL, IN_STRING, ESCAPED = "normal", "in_string", "escaped"

_TRAILING_COMMA = re.compile(r",\s*\Z")


def extract_json_candidate(text: str) -> str:
    """Strip code fences and leading prose; the result starts at the first '{'."""
    content = (text or "").strip()

    if "```" in content:
        for part in content.split("```"):
            part = part.strip()
            if part.startswith("{") or part.lower().startswith("json"):
                content = part[4:].strip() if part.lower().startswith("json") else part
                break

    first = content.find("{")
    if first == -1:
        raise MalformedResponseError("No JSON object found in model response", raw_text=text or "")
    return content[first:]


class _Frame:
    __slots__ = ("closer", "state", "key_start", "value_start", "literal")

    def __init__(self, closer: str):
        self.closer = closer
        # object: key -> colon -> value -> after_value; array: value -> after_value
        self.state = "key" if closer == "}" else "value"
        self.key_start = -1
        self.value_start = -1
        self.literal = False


def _strip_trailing_comma(text: str) -> str:
    return _TRAILING_COMMA.sub("", text.rstrip())


def repair_truncated_json(text: str) -> str:
    """
    Best-effort completion of a JSON document cut off mid-stream.

    Scans once tracking string/escape state and a stack of open containers,
    then closes an open string, drops a dangling key or half-written literal,
    strips trailing commas and closes containers innermost first.
    """
    t = (text or "").strip()
    first = t.find("{")
    if first == -1:
        return "{}"
    t = t[first:]

    state = NORMAL
    stack: List[_Frame] = []
    string_is_key = False
    string_start = -1
    escape_at = -1

    for i, ch in enumerate(t):
        if state == ESCAPED:
            state = IN_STRING
            continue
        if state == IN_STRING:
            if ch == "\\":
                state = ESCAPED
                escape_at = i
            elif ch == '"':
                state = NORMAL
                if stack and string_is_key:
                    stack[-1].state = "colon"
            continue

        # NORMAL
        top = stack[-1] if stack else None
        if ch.isspace():
            continue
        if ch == '"':
            state = IN_STRING
            string_start = i
            string_is_key = top is not None and top.closer == "}" and top.state == "key"
            if string_is_key:
                top.key_start = i
            elif top is not None:
                top.state, top.value_start, top.literal = "after_value", i, False
        elif ch in "{[":
            if top is not None:
                top.state, top.value_start, top.literal = "after_value", i, False
            stack.append(_Frame("}" if ch == "{" else "]"))
        elif ch in "}]":
            if stack and stack[-1].closer == ch:
                stack.pop()
        elif ch == ",":
            if top is not None:
                top.state = "key" if top.closer == "}" else "value"
        elif ch == ":":
            if top is not None and top.closer == "}":
                top.state = "value"
        elif top is not None and top.state == "value":
            top.state, top.value_start, top.literal = "after_value", i, True

    out = t
    top = stack[-1] if stack else None

    if state in (IN_STRING, ESCAPED):
        if string_is_key and top is not None:
            # unfinished key: drop it
            out = out[:top.key_start]
        else:
            if state == ESCAPED:
                out = out[:-1]
            elif escape_at > string_start and out[escape_at + 1:escape_at + 2] == "u" and len(out) - escape_at < 6:
                # half-written \uXXXX
                out = out[:escape_at]
            out += '"'
    elif top is not None:
        if top.closer == "}" and top.state in ("colon", "value") and top.key_start >= 0:
            # "key" or "key": with no value
            out = out[:top.key_start]
        elif top.state == "after_value" and top.literal:
            token = out[top.value_start:].strip()
            try:
                json.loads(token)
            except ValueError:
                cut = top.key_start if top.closer == "}" else top.value_start
                out = out[:cut]

    for frame in reversed(stack):
        out = _strip_trailing_comma(out) + frame.closer

    return out


def parse_digest_response(text: str) -> Any:
    candidate = extract_json_candidate(text)

    last = candidate.rfind("}")
    if last != -1:
        try:
            return json.loads(candidate[: last + 1])
        except ValueError:
            logger.debug("Brace-bounded candidate did not parse; trying full text")

    try:
        return json.loads(candidate)
    except ValueError as e:
        original = e

    logger.warning("Model response did not parse (%s); attempting repair", original)
    repaired = repair_truncated_json(candidate)
    try:
        parsed = json.loads(repaired)
    except ValueError as repair_error:
        logger.error("Repair failed: %s", repair_error)
        raise MalformedResponseError(
            f"Model returned malformed or truncated JSON: {original}",
            original_error=original,
            raw_text=text,
        ) from repair_error
    logger.info("Repaired truncated JSON response (%d -> %d chars)", len(candidate), len(repaired))
    return parsed


def normalize_digest_content(parsed: Any) -> Tuple[Dict[str, Any], str, int]:
    """Returns (content, summary, attention_count)."""
    if not isinstance(parsed, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(parsed).__name__}",
            raw_text=json.dumps(parsed, ensure_ascii=False)[:300],
        )
    summary = parsed.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = DEFAULT_SUMMARY
    items = parsed.get("attention_items")
    attention_count = len(items) if isinstance(items, list) else 0
    return parsed, summary, attention_count
