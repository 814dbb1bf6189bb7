"""Tests for salvage.claim_graph (locating, normalizing and checking claim graphs)."""

import json

import pytest

from salvage.claim_graph import (
    detect_schema_version,
    legacy_from_dict,
    normalize_claim,
    normalize_claim_ref,
    parse_claim_graph,
    qa_claim_graph,
    schema_warnings,
)
from salvage.models import SCHEMA_CURRENT, SCHEMA_LEGACY, Claim, ClaimGraph, ClaimRef, LegacyGraph

GRAPH = {
    "claims": [
        {
            "id": "c1",
            "label": "Use Postgres",
            "description": "Pick Postgres for durability",
            "stance": "prescriptive",
            "sourceStatementIds": ["s_0", "s_2"],
            "enables": ["c3"],
            "conflicts": [
                {"claimId": "c2", "question": "Which store?", "sourceStatementIds": ["s_1"], "nature": "optimization"}
            ],
        },
        {"id": "c2", "label": "Use SQLite", "stance": "prescriptive", "sourceStatementIds": ["s_1"]},
        {
            "id": "c3",
            "label": "Add backups",
            "stance": "cautionary",
            "sourceStatementIds": ["s_3"],
            "gates": {"prerequisites": [{"claimId": "c1", "sourceStatementIds": ["s_0"]}]},
            "conflicts": [{"claimId": "c2"}],
        },
    ],
    "edges": [],
}

NARRATIVE = "The models mostly agree on a relational store."
DELIMITED = NARRATIVE + "\n===GRAPH_TOPOLOGY===\n" + json.dumps(GRAPH, indent=2) + "\n"

LEGACY = {
    "id": "artifact-1",
    "claims": [{"id": "a", "label": "A", "text": "Claim A", "supporters": [1, 0], "type": "factual"}],
    "edges": [{"from": "a", "to": "b", "type": "supports"}],
    "turn": 2,
}


# ---------------------------------------------------------------------------
# Locating the graph
# ---------------------------------------------------------------------------

class TestParseClaimGraph:
    def test_delimited(self):
        """A delimited graph parses cleanly and the narrative is what precedes it."""
        result = parse_claim_graph(DELIMITED)
        assert result.success is True
        assert isinstance(result.graph, ClaimGraph)
        assert [c.id for c in result.graph.claims] == ["c1", "c2", "c3"]
        assert result.narrative == NARRATIVE
        assert result.warnings == []
        assert result.errors == []

    def test_fields_are_normalized(self):
        """Decoded claims are normalized and the decoded object is kept."""
        graph = parse_claim_graph(DELIMITED).graph
        c1, _, c3 = graph.claims
        assert c1.supporters == ["s_0", "s_2"]
        assert c1.conflicts[0] == ClaimRef(
            claim_id="c2", question="Which store?", source_statement_ids=["s_1"], nature="optimization"
        )
        assert c3.gates.prerequisites[0].claim_id == "c1"
        assert graph.schema_version == SCHEMA_CURRENT
        assert graph.raw == GRAPH

    def test_fenced(self):
        """A fenced graph is found and the fence is cut from the narrative."""
        text = "Here is the map.\n```json\n" + json.dumps(GRAPH) + "\n```\nThat's all."
        result = parse_claim_graph(text)
        assert result.success is True
        assert result.narrative == "Here is the map.\nThat's all."

    def test_wrapped_in_output_key(self):
        """A graph one wrapper key deep is found."""
        result = parse_claim_graph(json.dumps({"output": GRAPH}))
        assert [c.id for c in result.graph.claims] == ["c1", "c2", "c3"]

    def test_scans_past_unrelated_objects(self):
        """Objects without claims are skipped by the scanner."""
        text = 'Draft: {"note": 1} then ' + json.dumps(GRAPH) + " done"
        result = parse_claim_graph(text)
        assert result.success is True
        assert len(result.graph.claims) == 3
        assert result.narrative == 'Draft: {"note": 1} then\ndone'

    def test_streaming_block_is_not_found_yet(self):
        """An unfinished delimited block reports no graph yet."""
        text = DELIMITED[: DELIMITED.index('"c3"')]
        result = parse_claim_graph(text)
        assert result.success is False
        assert result.graph is None
        assert result.narrative == NARRATIVE
        assert result.errors == [{"field": "claims", "issue": "no claim graph found"}]

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_input(self, text):
        """Empty input is an error on the result, not an exception."""
        result = parse_claim_graph(text)
        assert result.success is False
        assert result.errors == [{"field": "input", "issue": "empty response"}]

    def test_prose_only(self):
        """Prose without a graph is returned as narrative."""
        result = parse_claim_graph("No structure at all.")
        assert result.success is False
        assert result.narrative == "No structure at all."

    def test_prefixes_never_contradict_final_parse(self):
        """A partial response either has no graph or the final one."""
        final = parse_claim_graph(DELIMITED)
        for end in range(0, len(DELIMITED), 9):
            partial = parse_claim_graph(DELIMITED[:end])
            assert not partial.success or partial.graph == final.graph, end

    def test_legacy_graph_is_returned_as_legacy(self):
        """Legacy-shaped data comes back as a LegacyGraph."""
        result = parse_claim_graph(json.dumps(LEGACY))
        assert result.success is True
        assert isinstance(result.graph, LegacyGraph)
        assert result.graph.schema_version == SCHEMA_LEGACY
        assert result.graph.claims[0].supporters == [0, 1]
        assert result.graph.edges[0].from_id == "a"
        assert result.graph.turn == 2

    def test_invalid_claims_become_warnings(self):
        """Unusable claims are dropped with warnings; the rest survive."""
        text = json.dumps({"claims": [{"label": "no id"}, "junk", {"id": "ok"}]})
        result = parse_claim_graph(text)
        assert result.success is True
        assert [c.id for c in result.graph.claims] == ["ok"]
        assert "claims[0]: missing id" in result.warnings
        assert "claims[1]: expected an object, got str" in result.warnings
        assert any(w.startswith("claims.0:") for w in result.warnings)


# ---------------------------------------------------------------------------
# Version detection
# ---------------------------------------------------------------------------

class TestDetectSchemaVersion:
    @pytest.mark.parametrize("tag,expected", [
        ("v1", SCHEMA_LEGACY),
        ("legacy", SCHEMA_LEGACY),
        (1, SCHEMA_LEGACY),
        ("V2", SCHEMA_CURRENT),
        (2, SCHEMA_CURRENT),
    ])
    def test_explicit_tag_wins(self, tag, expected):
        """A version tag decides regardless of shape."""
        assert detect_schema_version({"schema_version": tag, "claims": GRAPH["claims"]}) == expected
        assert detect_schema_version({"version": tag, "claims": []}) == expected

    def test_fingerprints(self):
        """Untagged graphs are told apart by their claim fields."""
        assert detect_schema_version(GRAPH) == SCHEMA_CURRENT
        assert detect_schema_version(LEGACY) == SCHEMA_LEGACY

    def test_legacy_without_edges(self):
        """Integer supporters alone mark a legacy graph."""
        assert detect_schema_version({"claims": [{"id": "a", "supporters": [0]}]}) == SCHEMA_LEGACY

    def test_undecidable(self):
        """Data without a claims list has no version."""
        assert detect_schema_version([]) is None
        assert detect_schema_version({"nodes": []}) is None


# ---------------------------------------------------------------------------
# Normalization and schema checks
# ---------------------------------------------------------------------------

class TestNormalization:
    def test_claim_ref_variants(self):
        """Refs may be bare ids or dicts with any of the id keys."""
        assert normalize_claim_ref("c2") == ClaimRef(claim_id="c2")
        assert normalize_claim_ref({"targetClaimId": "c9"}).claim_id == "c9"
        assert normalize_claim_ref({"claim_id": 4, "extra": True}) == ClaimRef(claim_id="4", extra={"extra": True})
        assert normalize_claim_ref({"question": "orphan"}) is None
        assert normalize_claim_ref(None) is None

    def test_claim_fallbacks(self):
        """title and text stand in for label and description."""
        claim, warning = normalize_claim({"id": 7, "title": "T", "text": "body", "supporters": ["s_1"]}, 0)
        assert warning is None
        assert claim == Claim(id="7", label="T", description="body", supporters=["s_1"])

    def test_unknown_keys_are_kept(self):
        """Unrecognized claim keys are kept in extra."""
        claim, _ = normalize_claim({"id": "x", "confidence": 0.9}, 0)
        assert claim.extra == {"confidence": 0.9}

    def test_schema_warnings(self):
        """Schema violations are reported with their path."""
        assert schema_warnings(GRAPH) == []
        messages = schema_warnings({"claims": [{"id": "a", "conflicts": [{"question": "?"}]}]})
        assert messages and messages[0].startswith("claims.0.conflicts.0:")
        assert schema_warnings({})[0].startswith("<root>:")

    def test_decoded_entries_are_kept_verbatim(self):
        """Claims and refs keep the exact entries they were built from."""
        raw = {
            "id": "x",
            "title": "T",
            "text": "body",
            "gates": {"prerequisites": [{"claimId": "y", "why": "order"}], "note": "kept"},
            "conflicts": ["z"],
        }
        claim, _ = normalize_claim(raw, 0)
        assert claim.raw is raw
        assert claim.gates.prerequisites[0].raw == {"claimId": "y", "why": "order"}
        assert claim.conflicts[0].raw == "z"


# ---------------------------------------------------------------------------
# Legacy graphs as data
# ---------------------------------------------------------------------------

class TestLegacyFromDict:
    def test_non_list_edges_become_a_warning(self):
        """An edges value that is not a list is a warning, not a crash."""
        text = json.dumps({"claims": [{"id": "a", "supporters": [1]}], "edges": 5, "version": "v1"})
        result = parse_claim_graph(text)
        assert result.success is True
        assert isinstance(result.graph, LegacyGraph)
        assert [c.id for c in result.graph.claims] == ["a"]
        assert result.graph.edges == []
        assert result.warnings == ["'edges' is int, expected a list"]
        assert result.graph.warnings[0].stage == "legacy_edge"

    def test_non_list_claims_and_ghosts(self):
        """Non-list claims and ghosts are treated as empty."""
        graph = legacy_from_dict({"claims": {"id": "a"}, "edges": [], "ghosts": "none"})
        assert graph.claims == []
        assert graph.ghosts == []
        assert [(w.stage, w.message) for w in graph.warnings] == [
            ("legacy_claim", "'claims' is dict, expected a list"),
        ]

    def test_malformed_entries_are_skipped(self):
        """Entries without ids or endpoints are skipped with warnings."""
        graph = legacy_from_dict({
            "claims": [{"label": "no id"}, {"id": "a", "supporters": ["2", True, 1]}],
            "edges": [{"from": "a"}, {"from": "a", "to": "b", "type": "weird"}],
        })
        assert [c.supporters for c in graph.claims] == [[1, 2]]
        assert [(e.from_id, e.to_id, e.type) for e in graph.edges] == [("a", "b", "weird")]
        assert [w.message for w in graph.warnings] == [
            "claims[0] has no id",
            "edges[0] lacks from/to",
            "unknown edge type 'weird'",
        ]


# ---------------------------------------------------------------------------
# QA
# ---------------------------------------------------------------------------

def _make_claim(claim_id, **kwargs):
    return Claim(id=claim_id, label=claim_id.upper(), **kwargs)


class TestQAClaimGraph:
    def test_clean_graph(self):
        """A consistent graph passes with no findings."""
        graph = parse_claim_graph(DELIMITED).graph
        assert qa_claim_graph(graph) == {"status": "OK", "errors": [], "warnings": []}

    def test_duplicate_ids_fail(self):
        """Duplicate claim ids are errors."""
        result = qa_claim_graph(ClaimGraph(claims=[_make_claim("a"), _make_claim("a")]))
        assert result["status"] == "FAIL"
        assert result["errors"] == ["Duplicate claim id: a"]

    def test_dangling_references_only_warn(self):
        """References to unknown claims are warnings."""
        graph = ClaimGraph(claims=[
            _make_claim("a", enables=["zz"], conflicts=[ClaimRef("yy")]),
        ])
        result = qa_claim_graph(graph)
        assert result["status"] == "OK"
        assert "Claim a enables unknown claim: zz" in result["warnings"]
        assert "Claim a conflicts with unknown claim: yy" in result["warnings"]

    def test_empty_graph_warns(self):
        """A graph with no claims warns."""
        assert qa_claim_graph(ClaimGraph())["warnings"] == ["Graph has no claims"]
