"""
Section locator: find named sections inside otherwise narrative text.

Each section has an ordered cascade of header spellings. Every match of
every pattern is scored by its normalized position in the document
(offset / length); matches earlier than the pattern's ``min_position`` are
discarded, and the surviving match furthest into the document wins. Real
section headers are almost always near the end of a model response, while
label-like strings early on are usually quotes or prose.

The ``min_position`` values are tuned, not derived. They can be overridden
by name in config/locator.yaml (see ``salvage.config``).
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from .config import apply_min_position_overrides, default_overrides, warn_unknown_overrides
from .models import SectionPattern, SectionSpan

_OPTIONS_EMOJI = "[🛠️🔧⚙️🛠]"
_TOPOLOGY_EMOJI = "[🔬📊🗺️]"
_ALL_AVAILABLE_OPTIONS = r"ALL[_\s]*AVAILABLE[_\s]*OPTIONS"
_GRAPH_TOPOLOGY = r"GRAPH[_\s]*TOPOLOGY"

OPTIONS_PATTERNS: Tuple[SectionPattern, ...] = (
    # ## 🛠️ ALL_AVAILABLE_OPTIONS
    SectionPattern.compile("options_heading_emoji", r"\n#{1,3}\s*[^\w\n].*?" + _ALL_AVAILABLE_OPTIONS + r".*?\n", 0.15, 0),
    SectionPattern.compile("options_emoji", r"\n?" + _OPTIONS_EMOJI + r"\s*" + _ALL_AVAILABLE_OPTIONS + r"\s*\n", 0.15, 1),
    # ===ALL_AVAILABLE_OPTIONS===
    SectionPattern.compile("options_delimited", r"\n?={2,}\s*" + _ALL_AVAILABLE_OPTIONS + r"\s*={2,}\n?", 0.0, 2),
    SectionPattern.compile("options_delimited_short", r"\n?={2,}\s*ALL[_\s]*OPTIONS\s*={2,}\n?", 0.0, 3),
    SectionPattern.compile("options_bold_delimited", r"\n\*\*\s*={2,}\s*" + _ALL_AVAILABLE_OPTIONS + r"\s*={2,}\s*\*\*\n?", 0.0, 4),
    SectionPattern.compile("options_h3_delimited", r"\n###\s*={2,}\s*" + _ALL_AVAILABLE_OPTIONS + r"\s*={2,}\n?", 0.0, 5),
    SectionPattern.compile("options_bold_heading", r"\n\*\*All Available Options:?\*\*\n", 0.25, 6),
    SectionPattern.compile("options_h2_heading", r"\n## All Available Options:?\n", 0.25, 7),
    SectionPattern.compile("options_h3_heading", r"\n### All Available Options:?\n", 0.25, 8),
    SectionPattern.compile("options_plain_label", r"\nAll Available Options:\n", 0.3, 9),
    SectionPattern.compile("options_bold_label", r"\n\*\*Options:?\*\*\n", 0.3, 10),
    SectionPattern.compile("options_h2_label", r"\n## Options:?\n", 0.3, 11),
)

# Loose spellings, used to find where a topology block begins.
TOPOLOGY_PATTERNS: Tuple[SectionPattern, ...] = (
    SectionPattern.compile("topology_delimited", r"={3,}\s*" + _GRAPH_TOPOLOGY + r"\s*={3,}", 0.0, 0),
    SectionPattern.compile("topology_heading", r"\n#{1,3}\s*[^\w\n].*?" + _GRAPH_TOPOLOGY, 0.0, 1),
    SectionPattern.compile("topology_emoji", r"\n?" + _TOPOLOGY_EMOJI + r"\s*" + _GRAPH_TOPOLOGY, 0.0, 2),
    SectionPattern.compile("topology_bare", r"\n?" + _TOPOLOGY_EMOJI + r"*\s*={0,}" + _GRAPH_TOPOLOGY + r"={0,}", 0.0, 3),
)

# The one spelling trusted for extracting the machine-readable block.
TOPOLOGY_DELIMITER = SectionPattern.compile("topology_delimited", r"={3,}\s*" + _GRAPH_TOPOLOGY + r"\s*={3,}")


@lru_cache(maxsize=1)
def _effective_cascades() -> Tuple[Tuple[SectionPattern, ...], Tuple[SectionPattern, ...]]:
    overrides = default_overrides()
    warn_unknown_overrides(overrides, (p.name for p in OPTIONS_PATTERNS + TOPOLOGY_PATTERNS))
    return (
        apply_min_position_overrides(OPTIONS_PATTERNS, overrides),
        apply_min_position_overrides(TOPOLOGY_PATTERNS, overrides),
    )


def get_options_patterns() -> Tuple[SectionPattern, ...]:
    return _effective_cascades()[0]


def get_topology_patterns() -> Tuple[SectionPattern, ...]:
    return _effective_cascades()[1]


def rank_candidates(
    text: str,
    patterns: Sequence[SectionPattern],
) -> List[Tuple[float, SectionPattern, SectionSpan]]:
    """
    Score every acceptable header match in ``text``.

    Returns:
        (normalized_position, pattern, span) tuples, best candidate first
    """
    if not text:
        return []

    length = len(text)
    candidates: List[Tuple[float, SectionPattern, SectionSpan]] = []
    for pattern in patterns:
        for match in pattern.regex.finditer(text):
            position = match.start() / length
            if position < pattern.min_position:
                continue
            candidates.append((position, pattern, SectionSpan(match.start(), match.end() - match.start())))

    candidates.sort(key=lambda c: (-c[0], c[1].priority))
    return candidates


def locate_section(text: str, patterns: Sequence[SectionPattern]) -> Optional[SectionSpan]:
    """
    Return the span of the best-scoring header, or None when no candidate survives.

    Several spellings often match the same header at slightly different
    offsets (with or without the leading newline or heading marks); the
    returned span covers all candidates overlapping the winner.
    """
    candidates = rank_candidates(text, patterns)
    if not candidates:
        return None

    best = candidates[0][2]
    start, end = best.start, best.end
    for _, _, span in candidates[1:]:
        if span.start < best.end and best.start < span.end:
            start = min(start, span.start)
            end = max(end, span.end)
    return SectionSpan(start, end - start)


def find_topology_position(text: str) -> int:
    """Offset of the loosest recognizable topology header, or -1."""
    span = locate_section(text, get_topology_patterns())
    return span.start if span else -1


def find_options_span(text: str) -> Optional[SectionSpan]:
    return locate_section(text, get_options_patterns())
