"""
analyzer/recovery.py — Response Recovery Parser

Backends wrap JSON in markdown fences or prose, and long answers get cut off
at the output-token limit. The helpers here recover the largest parseable
object without inventing content: text is only dropped or closed.
"""
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_CLOSERS = {"{": "}", "[": "]"}


class ResponseParseError(ValueError):
    """No JSON object could be recovered from a backend response."""


def recover_json(text: Optional[str]) -> Dict[str, Any]:
    """
    Best-effort extraction of one JSON object from raw backend text.

    Order of attempts:
        1. span from the first "{" to the last "}"
        2. the text from the first "{" with missing closers appended
        3. successively shorter prefixes ending at a "}", balanced

    Raises:
        ResponseParseError: when none of the attempts yields an object.
    """
    text = (text or "").strip()
    start = text.find("{")
    if start == -1:
        raise ResponseParseError("Response contains no JSON object")
    body = text[start:]

    end = body.rfind("}")
    if end != -1:
        parsed = _try_object(body[:end + 1])
        if parsed is not None:
            return parsed

    parsed = _try_balanced(body)
    if parsed is not None:
        logger.debug("Recovered truncated response by appending closers")
        return parsed

    pos = end
    while pos > 0:
        parsed = _try_balanced(body[:pos + 1])
        if parsed is not None:
            logger.debug("Recovered response by truncating at offset %d of %d", pos, len(body))
            return parsed
        pos = body.rfind("}", 0, pos)

    raise ResponseParseError(f"Unrecoverable response ({len(text)} chars)")


def _try_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _try_balanced(candidate: str) -> Optional[Dict[str, Any]]:
    suffix = _closing_suffix(candidate)
    if suffix is None:
        return None
    return _try_object(candidate + suffix)


def _closing_suffix(candidate: str) -> Optional[str]:
    """
    Return the closers needed to balance `candidate`, or None when the text
    ends inside a string literal or has stray closers.
    """
    stack = []
    in_string = False
    escaped = False
    for ch in candidate:
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
    if in_string:
        return None
    return "".join(reversed(stack))
