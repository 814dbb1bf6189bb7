"""
Balanced-delimiter scanner for JSON objects embedded in prose.

Walks the text one character at a time from the first ``{`` at or after
the requested offset, tracking brace depth plus an in-string flag and a
pending-escape flag, so braces inside string values never close the
object. When depth returns to zero the candidate is decoded; a single
targeted repair is attempted on failure. A truncated (still streaming)
object simply yields None.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Tuple

from .models import ScanResult

logger = logging.getLogger(__name__)

# "supporters": [S, 1] -- some generators emit a bare S placeholder.
_SUPPORTERS_LIST = re.compile(r'("supporters"\s*:\s*\[)([^\[\]]*)(\])')
_BARE_S = re.compile(r"(^|,)(\s*)S(\s*)(?=,|$)")


def repair_known_tokens(text: str) -> str:
    """Quote bare ``S`` elements inside ``supporters`` lists."""
    def _fix_list(match: re.Match) -> str:
        body = _BARE_S.sub(r'\1\2"S"\3', match.group(2))
        return match.group(1) + body + match.group(3)

    return _SUPPORTERS_LIST.sub(_fix_list, text)


def loads_with_repair(text: str) -> Tuple[Optional[Any], bool]:
    """
    Decode JSON, retrying once after ``repair_known_tokens``.

    Returns:
        (value, repaired) -- value is None when both attempts fail
    """
    try:
        return json.loads(text), False
    except ValueError:
        pass

    repaired = repair_known_tokens(text)
    if repaired == text:
        return None, False
    try:
        value = json.loads(repaired)
    except ValueError as e:
        logger.debug(f"JSON decode failed after repair: {e}")
        return None, False
    logger.debug("JSON decoded after repairing bare supporter tokens")
    return value, True


def scan_balanced_object(text: str, offset: int = 0) -> Optional[ScanResult]:
    """
    Extract the first balanced ``{...}`` object at or after ``offset``.

    Args:
        text: Text that may contain an object surrounded by prose or fences
        offset: Index to start searching from

    Returns:
        ScanResult with the decoded value and its [start, end) span, or None
        when no object starts there, the object is unterminated, or it does
        not decode even after repair
    """
    if not text:
        return None

    start = text.find("{", max(offset, 0))
    if start == -1:
        return None

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
                value, repaired = loads_with_repair(text[start:i + 1])
                if value is None:
                    logger.debug(f"Balanced object at {start}..{i + 1} did not decode")
                    return None
                return ScanResult(value=value, start=start, end=i + 1, repaired=repaired)

    # Unterminated: most likely still streaming.
    return None
