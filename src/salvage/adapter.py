"""
Downgrade current-schema claim graphs to the legacy claim/edge shape.

Older consumers still read graphs made of claims with integer model
supporters and typed edges. ``convert_current_to_legacy`` derives that
shape from a stance/gate/conflict graph. Every derived claim and edge
keeps the exact data it came from under ``provenance`` so nothing is lost
on the way down.

A claim whose derivation fails is kept with neutral defaults and a
DerivationWarning; the rest of the graph is unaffected.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .claim_graph import detect_schema_version, legacy_from_dict, normalize_claim_graph
from .models import (
    SCHEMA_LEGACY,
    Claim,
    ClaimGraph,
    ClaimRef,
    DerivationWarning,
    LegacyClaim,
    LegacyEdge,
    LegacyGraph,
    SalvageError,
    StatementRef,
    TurnMetadata,
)

logger = logging.getLogger(__name__)

StatementIndex = Dict[str, int]
StatementSource = Union[None, Mapping[str, Any], Iterable[Any]]

_TRAILING_INT = re.compile(r"(\d+)$")

_STANCE_TYPES = {
    "prescriptive": "prescriptive",
    "cautionary": "prescriptive",
    "prerequisite": "conditional",
    "dependent": "conditional",
    "assertive": "factual",
    "uncertain": "speculative",
}


def map_stance_to_type(stance: Optional[str]) -> str:
    return _STANCE_TYPES.get((stance or "").lower(), "factual")


def build_statement_index(statements: StatementSource) -> StatementIndex:
    """
    Statement id -> originating model index.

    Accepts a ready mapping, StatementRef objects, or dicts shaped like
    ``{"id": ..., "modelIndex": ...}``. Entries without an integer index are
    skipped so the trailing-digit fallback applies to them.
    """
    index: StatementIndex = {}
    if statements is None:
        return index

    if isinstance(statements, Mapping):
        for key, value in statements.items():
            if isinstance(value, int) and not isinstance(value, bool):
                index[str(key)] = value
        return index

    for item in statements:
        if isinstance(item, StatementRef):
            stmt_id, model_index = item.id, item.model_index
        elif isinstance(item, dict):
            stmt_id = item.get("id")
            model_index = item.get("modelIndex", item.get("model_index"))
        else:
            continue
        if stmt_id is not None and isinstance(model_index, int) and not isinstance(model_index, bool):
            index[str(stmt_id)] = model_index
    return index


def extract_supporter_models(claim: Claim, statement_index: StatementIndex) -> List[int]:
    """Model indices behind a claim's statements, sorted and deduplicated."""
    models = set()
    for stmt_id in claim.supporters:
        if stmt_id in statement_index:
            models.add(statement_index[stmt_id])
            continue
        # Ids like "s_3" carry the model index as a suffix; best effort only.
        match = _TRAILING_INT.search(str(stmt_id))
        if match:
            models.add(int(match.group(1)))
    return sorted(models)


def detect_challenger_role(claim: Claim) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns:
        (role, challenges) -- ("challenger", first conflict target) for a
        cautionary claim with conflicts, ("anchor", None) for any other claim
        with conflicts, (None, None) otherwise
    """
    if not claim.conflicts:
        return None, None
    if (claim.stance or "").lower() == "cautionary":
        return "challenger", claim.conflicts[0].claim_id
    return "anchor", None


def _source_of(item: Union[Claim, ClaimRef]) -> Any:
    """The decoded input an item was built from; items built in code fall back to their fields."""
    return item.raw if item.raw is not None else item.to_dict()


def _claim_provenance(claim: Claim) -> Dict[str, Any]:
    raw = _source_of(claim)
    return {
        "stance": claim.stance,
        "gates": raw.get("gates") if claim.raw is not None else claim.gates.to_dict(),
        "source_statement_ids": list(claim.supporters),
        "description": claim.description,
        "raw": raw,
    }


def convert_claim(claim: Claim, statement_index: StatementIndex) -> LegacyClaim:
    role, challenges = detect_challenger_role(claim)
    return LegacyClaim(
        id=claim.id,
        label=claim.label or claim.id,
        text=claim.description or claim.label or "",
        supporters=extract_supporter_models(claim, statement_index),
        type=map_stance_to_type(claim.stance),
        role=role,
        challenges=challenges,
        provenance=_claim_provenance(claim),
    )


def enables_to_edges(claim: Claim) -> List[LegacyEdge]:
    return [
        LegacyEdge(
            from_id=claim.id,
            to_id=target,
            type="supports",
            provenance={"source_statement_ids": [], "edge_type": "enables"},
        )
        for target in claim.enables
    ]


def conflicts_to_edges(claim: Claim, stances: Dict[str, Optional[str]]) -> List[LegacyEdge]:
    edges = []
    for ref in claim.conflicts:
        both_prescriptive = (
            (claim.stance or "").lower() == "prescriptive"
            and (stances.get(ref.claim_id) or "").lower() == "prescriptive"
        )
        is_tradeoff = (ref.nature or "").lower() == "optimization" or both_prescriptive
        edges.append(LegacyEdge(
            from_id=claim.id,
            to_id=ref.claim_id,
            type="tradeoff" if is_tradeoff else "conflicts",
            provenance={
                "source_statement_ids": list(ref.source_statement_ids),
                "edge_type": "conflict",
                "question": ref.question,
                "nature": ref.nature,
                "raw": _source_of(ref),
            },
        ))
    return edges


def gates_to_edges(claim: Claim) -> List[LegacyEdge]:
    """Each prerequisite gate points from the gating claim to the gated one."""
    return [
        LegacyEdge(
            from_id=ref.claim_id,
            to_id=claim.id,
            type="prerequisite",
            provenance={
                "source_statement_ids": list(ref.source_statement_ids),
                "gate_type": "prerequisite",
                "raw": _source_of(ref),
            },
        )
        for ref in claim.gates.prerequisites
    ]


def _graph_id(graph: ClaimGraph, metadata: TurnMetadata) -> str:
    payload = json.dumps([graph.to_dict(), metadata.turn, metadata.query], sort_keys=True, default=str)
    return f"artifact-{hashlib.sha1(payload.encode('utf-8')).hexdigest()[:12]}"


def _warn(warnings: List[DerivationWarning], claim_id: Optional[str], stage: str, exc: Exception) -> None:
    warning = DerivationWarning(claim_id=claim_id, stage=stage, message=f"{type(exc).__name__}: {exc}")
    logger.warning(f"Derivation failed for claim {claim_id} at {stage}: {warning.message}")
    warnings.append(warning)


def convert_current_to_legacy(
    graph: ClaimGraph,
    statements: StatementSource = None,
    metadata: Optional[TurnMetadata] = None,
    timestamp: Optional[str] = None,
) -> LegacyGraph:
    """
    Derive the legacy graph from a current-schema one.

    Args:
        graph: Parsed current-schema graph
        statements: Statement id -> model index lookup (see build_statement_index)
        metadata: Query, turn and participant count to stamp on the output
        timestamp: ISO timestamp to stamp; defaults to now (UTC)

    Returns:
        LegacyGraph with per-claim warnings for anything that could not be derived
    """
    if not isinstance(graph, ClaimGraph):
        raise SalvageError(f"Expected ClaimGraph, got {type(graph).__name__}")

    metadata = metadata or TurnMetadata()
    statement_index = build_statement_index(statements)
    warnings: List[DerivationWarning] = []
    stances = {claim.id: claim.stance for claim in graph.claims}

    legacy_claims: List[LegacyClaim] = []
    for claim in graph.claims:
        try:
            legacy_claims.append(convert_claim(claim, statement_index))
        except Exception as exc:
            _warn(warnings, getattr(claim, "id", None), "claim", exc)
            legacy_claims.append(LegacyClaim(
                id=str(getattr(claim, "id", "")),
                label=str(getattr(claim, "label", "") or getattr(claim, "id", "")),
                text=str(getattr(claim, "description", "") or ""),
                provenance={"raw": _source_of(claim) if isinstance(claim, Claim) else None},
            ))

    legacy_edges: List[LegacyEdge] = []
    for claim in graph.claims:
        for stage, derive in (
            ("enables", enables_to_edges),
            ("conflicts", lambda c: conflicts_to_edges(c, stances)),
            ("gates", gates_to_edges),
        ):
            try:
                legacy_edges.extend(derive(claim))
            except Exception as exc:
                _warn(warnings, getattr(claim, "id", None), stage, exc)

    return LegacyGraph(
        id=_graph_id(graph, metadata),
        claims=legacy_claims,
        edges=legacy_edges,
        ghosts=[],
        query=metadata.query,
        turn=metadata.turn,
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        model_count=metadata.model_count,
        provenance={"full_semantic_output": graph.raw or graph.to_dict()},
        warnings=warnings,
    )


def ensure_legacy(
    graph: Union[ClaimGraph, LegacyGraph, Dict[str, Any]],
    statements: StatementSource = None,
    metadata: Optional[TurnMetadata] = None,
) -> LegacyGraph:
    """Legacy graph for any parsed graph: current graphs are converted, legacy ones pass through."""
    if isinstance(graph, LegacyGraph):
        return graph
    if isinstance(graph, ClaimGraph):
        return convert_current_to_legacy(graph, statements, metadata)
    if isinstance(graph, dict):
        if detect_schema_version(graph) == SCHEMA_LEGACY:
            return legacy_from_dict(graph)
        current, _ = normalize_claim_graph(graph)
        return convert_current_to_legacy(current, statements, metadata)
    raise SalvageError(f"Cannot convert {type(graph).__name__} to a legacy graph")
