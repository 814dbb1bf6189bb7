"""Tests for salvage.sections (header cascades and the locator)."""

from salvage.models import SectionPattern
from salvage.sections import (
    OPTIONS_PATTERNS,
    TOPOLOGY_PATTERNS,
    find_options_span,
    find_topology_position,
    get_options_patterns,
    locate_section,
    rank_candidates,
)

FILLER = "The providers broadly agree on the approach but differ on sequencing. " * 10


class TestCascades:
    def test_pattern_names_are_unique(self):
        """Override names must identify exactly one pattern."""
        names = [p.name for p in OPTIONS_PATTERNS + TOPOLOGY_PATTERNS]
        assert len(names) == len(set(names))

    def test_priorities_follow_declaration_order(self):
        """Priority is the position in the cascade."""
        assert [p.priority for p in OPTIONS_PATTERNS] == sorted(p.priority for p in OPTIONS_PATTERNS)

    def test_effective_cascade_matches_shipped_config(self):
        """The shipped YAML restates the built-in thresholds."""
        by_name = {p.name: p.min_position for p in get_options_patterns()}
        assert by_name["options_bold_label"] == 0.3
        assert by_name["options_delimited"] == 0.0


class TestLocateSection:
    def test_not_found_is_none(self):
        """No header match gives None."""
        assert locate_section("nothing to see", OPTIONS_PATTERNS) is None
        assert locate_section("", OPTIONS_PATTERNS) is None

    def test_early_label_is_rejected_in_favour_of_late_header(self):
        """An Options label quoted early loses to the real header near the end."""
        text = (
            "You asked:\n**Options:**\nwhich database should we pick?\n"
            + FILLER
            + "\n**Options:**\n- **Postgres**: mature\n- **SQLite**: simple\n"
        )
        span = find_options_span(text)
        assert span is not None
        assert span.start == text.rindex("\n**Options:**\n")

    def test_early_label_alone_is_not_found(self):
        """A label below its position floor is not a section."""
        text = "You asked:\n**Options:**\nwhich database should we pick?\n" + FILLER
        assert find_options_span(text) is None

    def test_delimited_header_has_no_position_floor(self):
        """Delimited headers are accepted anywhere."""
        text = "\n===ALL_AVAILABLE_OPTIONS===\n- a\n" + FILLER
        span = find_options_span(text)
        assert span is not None
        assert span.start == 0

    def test_latest_candidate_wins_across_patterns(self):
        """The match furthest into the text wins regardless of pattern."""
        text = FILLER + "\n## All Available Options\n- a\n" + FILLER + "\n===ALL_AVAILABLE_OPTIONS===\n- b\n"
        span = find_options_span(text)
        assert text[span.end:].startswith("- b")

    def test_priority_breaks_ties_at_same_offset(self):
        """At equal offsets the higher-priority pattern ranks first."""
        high = SectionPattern.compile("high", r"\nHEADER", priority=0)
        low = SectionPattern.compile("low", r"\nHEAD", priority=5)
        ranked = rank_candidates("intro\nHEADER body", [low, high])
        assert [c[1].name for c in ranked] == ["high", "low"]


class TestTopologyPosition:
    def test_delimiter(self):
        """The delimiter position is reported."""
        text = "narrative\n===GRAPH_TOPOLOGY===\n{}"
        assert find_topology_position(text) == text.index("\n===")

    def test_overlapping_spellings_resolve_to_earliest_start(self):
        """Spellings matching the same header merge to the earliest start."""
        text = "narrative\n## 📊 GRAPH TOPOLOGY\n{}"
        assert find_topology_position(text) == text.index("\n## ")

    def test_absent(self):
        """No topology header gives -1."""
        assert find_topology_position("just narrative") == -1
