"""
Split a mapping response into narrative, options block and graph topology.

A mapping response is prose followed by an options block (human readable)
and a ``===GRAPH_TOPOLOGY===`` block (machine readable JSON), in either
order. Any of the three can be missing, and while streaming the JSON may
be cut off; an unfinished topology is reported the same as a missing one.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Tuple

from .models import MappingResult
from .normalizer import normalize_text
from .scanner import scan_balanced_object
from .sections import TOPOLOGY_DELIMITER, find_options_span, find_topology_position, locate_section

logger = logging.getLogger(__name__)

_OPTIONS_EMOJI = "[🛠️🔧⚙️🛠]"

_TRAILING_RULE = re.compile(r"\n---+\s*$")
_TRAILING_OPTIONS_HEADER = re.compile(r"\n#{1,3}\s*" + _OPTIONS_EMOJI + r"*\s*ALL[_\s]*AVAILABLE[_\s]*OPTIONS.*$", re.IGNORECASE)
_TRAILING_EMOJI_HEADING = re.compile(r"\n#{1,3}\s*" + _OPTIONS_EMOJI + r"+\s*$")
_TRAILING_EMOJI = re.compile(_OPTIONS_EMOJI + r"+\s*$")
_CLOSING_FENCE = re.compile(r"^```")

# What an options block looks like right after its header.
_LIST_STRUCTURE = re.compile(
    r"^\s*[-*•]\s+|\n\s*[-*•]\s+|^\s*\d+\.\s+|\n\s*\d+\.\s+|^\s*\*\*[^*]+\*\*"
    r"|^\s*Theme\s*:|^\s*###?\s+|^\s*[A-Z][^:\n]{2,}:"
    r"|^[\U0001F300-\U0001FAD6\u2600-\u26FF\u2700-\u27BF]",
    re.IGNORECASE,
)
_PREVIEW_CHARS = 400


def clean_narrative_text(text: str) -> str:
    """Drop a trailing rule and any half-emitted options header."""
    text = _TRAILING_RULE.sub("", text)
    text = _TRAILING_OPTIONS_HEADER.sub("", text)
    text = _TRAILING_EMOJI_HEADING.sub("", text)
    text = _TRAILING_EMOJI.sub("", text)
    return text.strip()


def clean_options_text(text: str) -> str:
    """Cut an options block at a trailing topology header, if any."""
    position = find_topology_position(text)
    if position > 0:
        return text[:position].strip()
    return text.strip()


def extract_graph_topology_and_strip(text: str) -> Tuple[str, Optional[Any]]:
    """
    Pull the JSON topology out of a response.

    Returns:
        (remaining_text, topology) -- topology is None when the delimiter is
        missing or the block is unterminated/undecodable; in the latter case
        the remaining text stops at the delimiter
    """
    if not text or not isinstance(text, str):
        return "", None

    normalized = normalize_text(text)
    span = locate_section(normalized, (TOPOLOGY_DELIMITER,))
    if span is None:
        return normalized, None

    before = normalized[:span.start].strip()
    rest = normalized[span.end:].strip()

    result = scan_balanced_object(rest)
    if result is None:
        logger.debug("Topology delimiter present but no complete object follows")
        return before, None

    after = _CLOSING_FENCE.sub("", rest[result.end:].strip(), count=1).strip()
    remaining = f"{before}\n{after}" if after else before
    return remaining, result.value


def extract_options_and_strip(text: str) -> Tuple[str, Optional[str]]:
    """
    Split narrative from the options block.

    Returns:
        (narrative, options) -- options is None when no header survives the
        locator or what follows it does not look like an options list
    """
    if not text or not isinstance(text, str):
        return "", None

    normalized = normalize_text(text)

    topology_start = find_topology_position(normalized)
    if topology_start > 0:
        normalized = normalized[:topology_start].strip()

    span = find_options_span(normalized)
    if span is None:
        return normalized, None

    after = normalized[span.end:].strip()
    preview = after[:_PREVIEW_CHARS]
    has_list_structure = bool(_LIST_STRUCTURE.search(preview))
    has_substance = len(after) > 50 and ("\n" in after or ":" in after)
    if not has_list_structure and not has_substance:
        logger.debug("Options header found but no list content follows it")
        return normalized, None

    narrative = clean_narrative_text(normalized[:span.start])
    options = clean_options_text(after)
    return narrative, options or None


def parse_mapping_response(response: Optional[str]) -> MappingResult:
    """Topology first, then options, then clean both."""
    if not response or not isinstance(response, str):
        return MappingResult()

    without_topology, topology = extract_graph_topology_and_strip(response)
    narrative, options = extract_options_and_strip(without_topology)

    return MappingResult(
        narrative=clean_narrative_text(narrative),
        options=clean_options_text(options) if options else None,
        graph_topology=topology,
    )
