"""
Claim graph parsing.

Mapper passes emit narrative prose plus a JSON claim graph, sometimes
fenced, sometimes behind a ``===GRAPH_TOPOLOGY===`` delimiter, sometimes
bare. ``parse_claim_graph`` recovers the graph without caring which, and
reports problems as errors/warnings on the result instead of raising.

Dangling references between claims are tolerated while parsing;
``qa_claim_graph`` reports them separately.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import jsonschema

from .mapping import extract_graph_topology_and_strip
from .models import (
    EDGE_TYPES,
    SCHEMA_CURRENT,
    SCHEMA_LEGACY,
    Claim,
    ClaimGraph,
    ClaimGraphParseResult,
    ClaimRef,
    DerivationWarning,
    Gates,
    LegacyClaim,
    LegacyEdge,
    LegacyGraph,
)
from .normalizer import normalize_text
from .scanner import scan_balanced_object
from .sections import TOPOLOGY_DELIMITER, locate_section
from .tolerant import load_structured

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schemas" / "claim_graph.schema.json"

_CURRENT_CLAIM_KEYS = ("stance", "gates", "conflicts", "enables", "sourceStatementIds", "source_statement_ids")
_VERSION_KEYS = ("schema_version", "schemaVersion", "version", "_version")
_VERSION_ALIASES = {
    "current": SCHEMA_CURRENT, "v2": SCHEMA_CURRENT, "2": SCHEMA_CURRENT,
    "legacy": SCHEMA_LEGACY, "v1": SCHEMA_LEGACY, "1": SCHEMA_LEGACY,
}
_WRAPPER_KEYS = ("output", "map", "graph", "result")
_FENCE = re.compile(r"```(?:json)?\s*[\s\S]*?```", re.IGNORECASE)

_CLAIM_KNOWN_KEYS = {
    "id", "label", "title", "text", "description", "stance", "supporters",
    "sourceStatementIds", "source_statement_ids", "gates", "enables", "conflicts",
}
_REF_KNOWN_KEYS = {
    "claimId", "claim_id", "targetClaimId", "target", "question",
    "sourceStatementIds", "source_statement_ids", "nature",
}


# ---------------------------------------------------------------------------
# Schema validation and version detection
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def _load_schema() -> Dict[str, Any]:
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


def schema_warnings(obj: Any) -> List[str]:
    """JSON-Schema violations of a decoded current-schema graph, as messages."""
    validator = jsonschema.Draft7Validator(_load_schema())
    messages = []
    for error in sorted(validator.iter_errors(obj), key=lambda e: [str(p) for p in e.absolute_path]):
        path = ".".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{path}: {error.message}")
    return messages


def detect_schema_version(obj: Any) -> Optional[str]:
    """
    Tell current from legacy graphs.

    An explicit version tag wins. Older recorded data has none, so fall back
    to the smallest fingerprint that separates the two shapes.
    """
    if not isinstance(obj, dict):
        return None

    for key in _VERSION_KEYS:
        tag = obj.get(key)
        if tag is not None:
            version = _VERSION_ALIASES.get(str(tag).strip().lower())
            if version:
                return version

    claims = obj.get("claims")
    if not isinstance(claims, list):
        return None

    dicts = [c for c in claims if isinstance(c, dict)]
    if any(key in c for c in dicts for key in _CURRENT_CLAIM_KEYS):
        return SCHEMA_CURRENT

    edges = obj.get("edges")
    int_supporters = any(
        isinstance(c.get("supporters"), list)
        and c["supporters"]
        and all(isinstance(s, int) and not isinstance(s, bool) for s in c["supporters"])
        for c in dicts
    )
    edge_shaped = isinstance(edges, list) and any(isinstance(e, dict) and "from" in e and "to" in e for e in edges)
    if int_supporters and (edge_shaped or not edges):
        return SCHEMA_LEGACY

    return SCHEMA_CURRENT


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def normalize_claim_ref(raw: Any) -> Optional[ClaimRef]:
    """Gate and conflict entries come as dicts or as bare claim ids."""
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        return ClaimRef(claim_id=str(raw), raw=raw)
    if not isinstance(raw, dict):
        return None

    target = raw.get("claimId", raw.get("claim_id", raw.get("targetClaimId", raw.get("target"))))
    if target is None or str(target).strip() == "":
        return None

    question = raw.get("question")
    nature = raw.get("nature")
    return ClaimRef(
        claim_id=str(target),
        question=str(question) if question is not None else None,
        source_statement_ids=_str_list(raw.get("sourceStatementIds", raw.get("source_statement_ids"))),
        nature=str(nature) if nature is not None else None,
        extra={k: v for k, v in raw.items() if k not in _REF_KNOWN_KEYS},
        raw=raw,
    )


def _ref_list(value: Any) -> List[ClaimRef]:
    if not isinstance(value, list):
        return []
    return [ref for ref in (normalize_claim_ref(item) for item in value) if ref is not None]


def normalize_claim(raw: Any, index: int) -> Tuple[Optional[Claim], Optional[str]]:
    """
    Normalize one decoded claim.

    Returns:
        (claim, warning) -- exactly one of them is None
    """
    if not isinstance(raw, dict):
        return None, f"claims[{index}]: expected an object, got {type(raw).__name__}"

    claim_id = raw.get("id")
    if claim_id is None or str(claim_id).strip() == "":
        return None, f"claims[{index}]: missing id"

    gates_raw = raw.get("gates") if isinstance(raw.get("gates"), dict) else {}
    conditionals = gates_raw.get("conditionals")
    supporters = raw.get("supporters")
    if not isinstance(supporters, list):
        supporters = raw.get("sourceStatementIds", raw.get("source_statement_ids"))
    label = raw.get("label") or raw.get("title") or ""
    description = raw.get("description") or raw.get("text") or ""
    stance = raw.get("stance")

    claim = Claim(
        id=str(claim_id),
        label=str(label),
        description=str(description),
        stance=str(stance) if stance is not None else None,
        supporters=_str_list(supporters),
        gates=Gates(
            prerequisites=_ref_list(gates_raw.get("prerequisites")),
            conditionals=[c for c in conditionals if isinstance(c, dict)] if isinstance(conditionals, list) else [],
        ),
        enables=_str_list(raw.get("enables")),
        conflicts=_ref_list(raw.get("conflicts")),
        extra={k: v for k, v in raw.items() if k not in _CLAIM_KNOWN_KEYS},
        raw=raw,
    )
    return claim, None


def normalize_claim_graph(obj: Dict[str, Any]) -> Tuple[ClaimGraph, List[str]]:
    """Build a ClaimGraph from a decoded object, keeping every claim that can be salvaged."""
    warnings: List[str] = []
    claims: List[Claim] = []
    raw_claims = obj.get("claims") if isinstance(obj.get("claims"), list) else []

    for index, raw in enumerate(raw_claims):
        claim, warning = normalize_claim(raw, index)
        if warning:
            warnings.append(warning)
        if claim is not None:
            claims.append(claim)

    edges = obj.get("edges")
    conditionals = obj.get("conditionals")
    graph = ClaimGraph(
        claims=claims,
        edges=[e for e in edges if isinstance(e, dict)] if isinstance(edges, list) else [],
        conditionals=[c for c in conditionals if isinstance(c, dict)] if isinstance(conditionals, list) else [],
        schema_version=SCHEMA_CURRENT,
        raw=obj,
    )
    return graph, warnings


# ---------------------------------------------------------------------------
# Legacy graphs arriving as data
# ---------------------------------------------------------------------------

def _int_list(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    out = []
    for v in value:
        if isinstance(v, bool):
            continue
        if isinstance(v, int):
            out.append(v)
        elif isinstance(v, str) and v.strip().isdigit():
            out.append(int(v))
    return sorted(set(out))


def _side_channel(raw: Dict[str, Any]) -> Dict[str, Any]:
    value = raw.get("_v2", raw.get("provenance"))
    return value if isinstance(value, dict) else {}


def _entries(obj: Dict[str, Any], key: str, stage: str, warnings: List[DerivationWarning]) -> List[Any]:
    """The list under ``key``; anything else present there becomes a warning."""
    value = obj.get(key)
    if value is None or isinstance(value, list):
        return value or []
    warnings.append(DerivationWarning(
        claim_id=None, stage=stage, message=f"'{key}' is {type(value).__name__}, expected a list",
    ))
    return []


def legacy_from_dict(obj: Dict[str, Any]) -> LegacyGraph:
    """Read a decoded legacy graph; malformed entries become warnings."""
    warnings: List[DerivationWarning] = []
    raw_claims = _entries(obj, "claims", "legacy_claim", warnings)
    raw_edges = _entries(obj, "edges", "legacy_edge", warnings)

    claims: List[LegacyClaim] = []
    for index, raw in enumerate(raw_claims):
        if not isinstance(raw, dict) or raw.get("id") is None:
            warnings.append(DerivationWarning(claim_id=None, stage="legacy_claim", message=f"claims[{index}] has no id"))
            continue
        claim_id = str(raw["id"])
        role = raw.get("role")
        challenges = raw.get("challenges")
        claims.append(LegacyClaim(
            id=claim_id,
            label=str(raw.get("label") or claim_id),
            text=str(raw.get("text") or raw.get("label") or ""),
            supporters=_int_list(raw.get("supporters")),
            type=str(raw.get("type") or "factual"),
            role=str(role) if role else None,
            challenges=str(challenges) if challenges else None,
            provenance=_side_channel(raw),
        ))

    edges: List[LegacyEdge] = []
    for index, raw in enumerate(raw_edges):
        if not isinstance(raw, dict) or raw.get("from") is None or raw.get("to") is None:
            warnings.append(DerivationWarning(claim_id=None, stage="legacy_edge", message=f"edges[{index}] lacks from/to"))
            continue
        edge_type = str(raw.get("type") or "supports")
        if edge_type not in EDGE_TYPES:
            warnings.append(DerivationWarning(
                claim_id=str(raw["from"]), stage="legacy_edge", message=f"unknown edge type '{edge_type}'",
            ))
        edges.append(LegacyEdge(
            from_id=str(raw["from"]),
            to_id=str(raw["to"]),
            type=edge_type,
            provenance=_side_channel(raw),
        ))

    for warning in warnings:
        logger.warning(f"Legacy graph entry skipped or suspect: {warning.message}")

    turn = obj.get("turn")
    model_count = obj.get("model_count")
    return LegacyGraph(
        id=str(obj.get("id") or ""),
        claims=claims,
        edges=edges,
        ghosts=list(obj["ghosts"]) if isinstance(obj.get("ghosts"), list) else [],
        query=str(obj.get("query") or ""),
        turn=turn if isinstance(turn, int) and not isinstance(turn, bool) else 0,
        timestamp=str(obj.get("timestamp") or ""),
        model_count=model_count if isinstance(model_count, int) and not isinstance(model_count, bool) else 0,
        provenance=_side_channel(obj),
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Locating the graph in text
# ---------------------------------------------------------------------------

def _graph_root(value: Any) -> Optional[Dict[str, Any]]:
    """The object carrying ``claims``, looking one wrapper level deep."""
    if not isinstance(value, dict):
        return None
    if isinstance(value.get("claims"), list):
        return value
    for key in _WRAPPER_KEYS:
        inner = value.get(key)
        if isinstance(inner, dict) and isinstance(inner.get("claims"), list):
            return inner
    return None


def _narrative_without_block(text: str) -> str:
    fence = _FENCE.search(text)
    if fence:
        return f"{text[:fence.start()].strip()}\n{text[fence.end():].strip()}".strip()
    first, last = text.find("{"), text.rfind("}")
    if first == -1 or last <= first:
        return text.strip()
    return f"{text[:first].strip()}\n{text[last + 1:].strip()}".strip()


def _scan_for_graph(text: str) -> Optional[Tuple[Dict[str, Any], int, int]]:
    """Try each ``{`` in turn until a balanced object with claims decodes."""
    position = text.find("{")
    while position != -1:
        result = scan_balanced_object(text, position)
        if result is None:
            position = text.find("{", position + 1)
            continue
        root = _graph_root(result.value)
        if root is not None:
            return root, result.start, result.end
        position = text.find("{", result.end)
    return None


def locate_graph(normalized: str) -> Tuple[Optional[Dict[str, Any]], str, str]:
    """
    Find the decoded graph object in normalized text.

    Returns:
        (graph_object, narrative, route) -- route names the tier that worked
    """
    if locate_section(normalized, (TOPOLOGY_DELIMITER,)) is not None:
        remaining, topology = extract_graph_topology_and_strip(normalized)
        if topology is None:
            # Delimiter seen but the object is not closed yet.
            return None, remaining, "pending"
        root = _graph_root(topology)
        if root is not None:
            return root, remaining, "delimited"

    root = _graph_root(load_structured(normalized))
    if root is not None:
        return root, _narrative_without_block(normalized), "structured"

    found = _scan_for_graph(normalized)
    if found is not None:
        root, start, end = found
        narrative = f"{normalized[:start].strip()}\n{normalized[end:].strip()}".strip()
        return root, narrative, "scanned"

    return None, normalized.strip(), "none"


def parse_claim_graph(text: Optional[str]) -> ClaimGraphParseResult:
    """
    Recover a claim graph from model output.

    Returns:
        ClaimGraphParseResult; ``success`` is False when no graph is present
        yet (absent or still streaming). ``graph`` is a ClaimGraph for
        current-schema data; legacy-shaped data is returned as a
        LegacyGraph so callers can switch on ``schema_version``.
    """
    if not text or not isinstance(text, str):
        return ClaimGraphParseResult(errors=[{"field": "input", "issue": "empty response"}])

    normalized = normalize_text(text)
    obj, narrative, route = locate_graph(normalized)
    if obj is None:
        return ClaimGraphParseResult(
            narrative=narrative,
            errors=[{"field": "claims", "issue": "no claim graph found"}],
        )

    logger.debug(f"Claim graph located via {route} route")
    version = detect_schema_version(obj)

    if version == SCHEMA_LEGACY:
        legacy = legacy_from_dict(obj)
        return ClaimGraphParseResult(
            success=True,
            graph=legacy,
            narrative=narrative,
            warnings=[w.message for w in legacy.warnings],
        )

    graph, warnings = normalize_claim_graph(obj)
    warnings = schema_warnings(obj) + warnings
    return ClaimGraphParseResult(success=True, graph=graph, narrative=narrative, warnings=warnings)


# ---------------------------------------------------------------------------
# QA
# ---------------------------------------------------------------------------

def qa_claim_graph(graph: ClaimGraph) -> Dict[str, Any]:
    """Duplicate ids fail; references to unknown claims only warn."""
    errors: List[str] = []
    warnings: List[str] = []

    if not graph.claims:
        warnings.append("Graph has no claims")

    seen: Set[str] = set()
    for claim in graph.claims:
        if claim.id in seen:
            errors.append(f"Duplicate claim id: {claim.id}")
        seen.add(claim.id)

    for claim in graph.claims:
        for ref in claim.gates.prerequisites:
            if ref.claim_id not in seen:
                warnings.append(f"Claim {claim.id} has prerequisite on unknown claim: {ref.claim_id}")
        for ref in claim.conflicts:
            if ref.claim_id not in seen:
                warnings.append(f"Claim {claim.id} conflicts with unknown claim: {ref.claim_id}")
        for target in claim.enables:
            if target not in seen:
                warnings.append(f"Claim {claim.id} enables unknown claim: {target}")

    return {"status": "FAIL" if errors else "OK", "errors": errors, "warnings": warnings}
