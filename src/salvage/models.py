"""
Data models for the structured-output extraction engine.

Every parse call builds these fresh; nothing here is cached or shared.
They are intentionally plain dataclasses so results can be compared in
tests and turned into primitives with ``to_dict()``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Pattern, Union


class SalvageError(Exception):
    """Raised for caller mistakes at API boundaries (never for bad model text)."""
    pass


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Sections and scanning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SectionSpan(_Serializable):
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True)
class SectionPattern:
    """One entry of a header cascade.

    ``min_position`` is the earliest normalized offset (0..1) at which a match
    is accepted. ``priority`` only breaks ties between matches at the same
    offset; lower wins.
    """
    name: str
    regex: Pattern[str]
    min_position: float = 0.0
    priority: int = 0

    @classmethod
    def compile(cls, name: str, pattern: str, min_position: float = 0.0,
                priority: int = 0, flags: int = re.IGNORECASE) -> "SectionPattern":
        return cls(name, re.compile(pattern, flags), min_position, priority)


@dataclass(frozen=True)
class ScanResult(_Serializable):
    value: Any
    start: int
    end: int  # exclusive
    repaired: bool = False


@dataclass
class MappingResult(_Serializable):
    narrative: str = ""
    options: Optional[str] = None
    graph_topology: Optional[Any] = None


# ---------------------------------------------------------------------------
# Audit report
# ---------------------------------------------------------------------------

SIGNAL_TYPES = ("divergence", "overclaim", "gap", "blindspot")
SIGNAL_PRIORITIES = ("blocker", "risk", "enhancement")
GAP_CATEGORIES = ("foundational", "tactical")

DEFAULT_CONFIDENCE = 0.5
DEFAULT_PRESENTATION_STRATEGY = "confident_with_caveats"


@dataclass
class Gap(_Serializable):
    title: str
    explanation: str
    category: Optional[str] = None


@dataclass
class Signal(_Serializable):
    type: str
    priority: str
    content: str
    source: str = ""
    impact: str = ""


@dataclass
class VerificationTrigger(_Serializable):
    claim: str = ""
    why: str = ""
    source_type: str = ""


@dataclass
class ReframingSuggestion(_Serializable):
    issue: str = ""
    better_question: str = ""
    unlocks: str = ""


@dataclass
class HonestAssessment(_Serializable):
    reliability_summary: str = ""
    biggest_risk: str = ""
    recommended_next_step: str = ""


@dataclass
class MissedInsight(_Serializable):
    insight: str
    provider: str = ""
    in_mapper_options: bool = False


@dataclass
class SynthesisAccuracy(_Serializable):
    preserved: List[str] = field(default_factory=list)
    overclaimed: List[str] = field(default_factory=list)
    missed: Dict[str, List[str]] = field(default_factory=dict)
    missed_from_synthesis: List[MissedInsight] = field(default_factory=list)


@dataclass
class UnlistedOption(_Serializable):
    title: str
    description: str = ""
    source_provider: str = ""


@dataclass
class MapperAudit(_Serializable):
    complete: bool = True
    unlisted_options: List[UnlistedOption] = field(default_factory=list)


@dataclass
class AuditReport(_Serializable):
    confidence_score: float = DEFAULT_CONFIDENCE
    rationale: str = ""
    presentation_strategy: str = DEFAULT_PRESENTATION_STRATEGY
    strategy_rationale: str = ""
    gaps: List[Gap] = field(default_factory=list)
    signals: List[Signal] = field(default_factory=list)
    honest_assessment: Union[str, HonestAssessment] = ""
    meta_pattern: Optional[str] = None
    synthesis_accuracy: Optional[SynthesisAccuracy] = None
    verification_triggers: List[VerificationTrigger] = field(default_factory=list)
    reframing_suggestion: Optional[ReframingSuggestion] = None
    mapper_audit: Optional[MapperAudit] = None
    source: str = "empty"  # json | heuristic | empty


# ---------------------------------------------------------------------------
# Claim graph, current schema
# ---------------------------------------------------------------------------

SCHEMA_CURRENT = "current"
SCHEMA_LEGACY = "legacy"


@dataclass
class ClaimRef(_Serializable):
    """A gate or conflict entry pointing at another claim."""
    claim_id: str
    question: Optional[str] = None
    source_statement_ids: List[str] = field(default_factory=list)
    nature: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    # The entry exactly as decoded (a dict or a bare claim id).
    raw: Any = field(default=None, compare=False)


@dataclass
class Gates(_Serializable):
    prerequisites: List[ClaimRef] = field(default_factory=list)
    conditionals: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Claim(_Serializable):
    id: str
    label: str = ""
    description: str = ""
    stance: Optional[str] = None
    supporters: List[str] = field(default_factory=list)
    gates: Gates = field(default_factory=Gates)
    enables: List[str] = field(default_factory=list)
    conflicts: List[ClaimRef] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False)


@dataclass
class ClaimGraph(_Serializable):
    claims: List[Claim] = field(default_factory=list)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    conditionals: List[Dict[str, Any]] = field(default_factory=list)
    schema_version: str = SCHEMA_CURRENT
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DerivationWarning(_Serializable):
    claim_id: Optional[str]
    stage: str
    message: str


@dataclass
class ClaimGraphParseResult(_Serializable):
    success: bool = False
    graph: Optional[Union[ClaimGraph, LegacyGraph]] = None
    narrative: str = ""
    errors: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Claim graph, legacy schema
# ---------------------------------------------------------------------------

EDGE_TYPES = ("supports", "conflicts", "tradeoff", "prerequisite")


@dataclass
class LegacyClaim(_Serializable):
    id: str
    label: str
    text: str
    supporters: List[int] = field(default_factory=list)
    type: str = "factual"
    role: Optional[str] = None
    challenges: Optional[str] = None
    provenance: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LegacyEdge(_Serializable):
    from_id: str
    to_id: str
    type: str
    provenance: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LegacyGraph(_Serializable):
    id: str
    claims: List[LegacyClaim] = field(default_factory=list)
    edges: List[LegacyEdge] = field(default_factory=list)
    ghosts: List[Any] = field(default_factory=list)
    query: str = ""
    turn: int = 0
    timestamp: str = ""
    model_count: int = 0
    provenance: Dict[str, Any] = field(default_factory=dict)
    warnings: List[DerivationWarning] = field(default_factory=list)
    schema_version: str = SCHEMA_LEGACY


@dataclass(frozen=True)
class StatementRef:
    id: str
    model_index: Optional[int] = None


@dataclass(frozen=True)
class TurnMetadata:
    query: str = ""
    turn: int = 0
    model_count: int = 0


# ---------------------------------------------------------------------------
# Artifacts and prompt brackets
# ---------------------------------------------------------------------------

@dataclass
class Artifact(_Serializable):
    title: str
    identifier: str
    content: str
    mime_type: str


@dataclass
class ArtifactExtraction(_Serializable):
    clean_text: str = ""
    artifacts: List[Artifact] = field(default_factory=list)


@dataclass(frozen=True)
class Bracket(_Serializable):
    variable: str
    options: List[str]
    start_index: int
    end_index: int  # exclusive
