"""
Structured-first decoding helpers shared by the report parsers.

``load_structured`` implements the first tier: strip a code fence, undo
one level of string double-encoding, then decode the span between the
first ``{`` and the last ``}``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from .scanner import loads_with_repair

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or ``text`` unchanged."""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text


def unwrap_double_encoded(text: str) -> Any:
    """
    Decode one level of JSON string encoding when ``text`` is a quoted string.

    Returns the inner text, a decoded object when the quoted payload was
    already an object, or ``text`` itself when it is not a valid JSON string.
    """
    if len(text) < 2 or not (text.startswith('"') and text.endswith('"')):
        return text
    try:
        inner = json.loads(text)
    except ValueError:
        return text
    if isinstance(inner, str):
        return inner.strip()
    return inner


def load_structured(text: str) -> Optional[Dict[str, Any]]:
    """
    Decode the object a model response was supposed to be.

    Returns:
        The decoded dict, or None when no object decodes
    """
    if not text or not isinstance(text, str):
        return None

    candidate = strip_code_fence(text.strip())
    unwrapped = unwrap_double_encoded(candidate)
    if isinstance(unwrapped, dict):
        return unwrapped
    if not isinstance(unwrapped, str):
        return None

    first = unwrapped.find("{")
    last = unwrapped.rfind("}")
    if first == -1 or last <= first:
        return None

    value, _ = loads_with_repair(unwrapped[first:last + 1])
    if isinstance(value, dict):
        return value
    logger.debug("No decodable object between first and last brace")
    return None
