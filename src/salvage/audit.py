"""
Audit report parsing.

Audit passes are asked for JSON but regularly answer in markdown with
consistent section headers instead. ``parse_audit_report`` tries the
structured route first and falls back to per-section extractors. Each
extractor is independent: one missing or mangled section never prevents
the others from being read. Nothing here raises on bad input.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Union

from .models import (
    AuditReport,
    DEFAULT_CONFIDENCE,
    DEFAULT_PRESENTATION_STRATEGY,
    GAP_CATEGORIES,
    Gap,
    HonestAssessment,
    MapperAudit,
    MissedInsight,
    ReframingSuggestion,
    Signal,
    SynthesisAccuracy,
    UnlistedOption,
    VerificationTrigger,
)
from .normalizer import normalize_text
from .signals import derive_signals, normalize_signal
from .tolerant import load_structured

logger = logging.getLogger(__name__)

# Keys whose presence marks a decoded object as an audit report.
FINGERPRINT_KEYS = (
    "confidenceScore", "confidence_score",
    "honestAssessment", "honest_assessment",
    "presentationStrategy", "presentation_strategy",
    "signals",
)

_SECTION_NAMES = {
    "confidence": r"confidence\s+score",
    "rationale": r"rationale",
    "strategy": r"presentation\s+strategy",
    "gaps": r"gap\s+detection",
    "synthesis": r"synthesis\s+accuracy",
    "triggers": r"verification\s+triggers",
    "reframing": r"reframing\s+suggestion",
    "mapper_audit": r"mapper\s+audit",
    "honest": r"honest\s+assessment",
    "meta_pattern": r"meta-pattern",
}
_KNOWN_SECTIONS = "|".join(_SECTION_NAMES.values())

# A section body runs until the next heading, rule, bold known-section
# label, or the end of the text.
_SECTION_END = (
    r"(?=\n#{1,3}\s|\n\*\*\s*(?:" + _KNOWN_SECTIONS + r")|\n---|\Z)"
)


def _compile_section(name_regex: str, anchored: bool) -> "re.Pattern[str]":
    prefix = r"(?:^|\n)[ \t]*(?:#{1,3}[ \t]*|\*\*[ \t]*)?(?:\d+\.[ \t]*)?" if anchored else ""
    return re.compile(prefix + name_regex + r"[ \t]*(?:\*\*:?|:\*\*|:)?[ \t]*([\s\S]*?)" + _SECTION_END, re.IGNORECASE)


_SECTION_PATTERNS = {
    key: (_compile_section(rx, True), _compile_section(rx, False))
    for key, rx in _SECTION_NAMES.items()
}

_CONFIDENCE = re.compile(r"confidence\s+score[*:\s]*[\[(]?(\d+(?:\.\d+)?)(?=[^\d.])", re.IGNORECASE)
_STRATEGY = re.compile(r"recommended\s*\**\s*:\s*\**\s*([a-z_]+)(?=[^a-z_])", re.IGNORECASE)

_GAP_WITH_CATEGORY = re.compile(
    r"gap\s+\d+\s*\[(foundational|tactical)\][\s:*]*([^*—–\n]+)\**\s*[—–-]\s*([^\n]+)", re.IGNORECASE
)
_GAP_LEGACY = re.compile(r"gap\s+\d+[\s:*]*([^*—–\n\[]+)\**\s*[—–-]\s*([^\n]+)", re.IGNORECASE)

_UNLISTED_OPTION = re.compile(
    r"\*\*unlisted\s+option\*\*[:\s]*([^—\n]+?)\s*—\s*([^—\n]+?)\s*—\s*source[:\s]*([^\n]+)", re.IGNORECASE
)

_BULLET = re.compile(r"^[-*•]\s+")
_LIST_SEPARATORS = re.compile(r"\s*[;|•·]+\s+")
_MISSED_SEGMENT_SPLIT = re.compile(r"\s*;\s*|\s*\|\s*")
_PROVIDER_BOLD = re.compile(r"^\*\*?([a-zA-Z0-9_\-.\s]+)\*\*?:?\s*(.+)$")
_PROVIDER_POSSESSIVE = re.compile(r"^([a-zA-Z0-9_\-.]+)'s\s+(.+)$")

_QUOTES = "\"'“”‘’"


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def _pick(obj: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return default


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def clamp_confidence(value: Any) -> float:
    """Coerce to a float in [0, 1]; anything unusable becomes the neutral 0.5."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    try:
        score = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if score != score:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, score))


def _section_body(text: str, key: str) -> Optional[str]:
    for pattern in _SECTION_PATTERNS[key]:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _label_value(block: str, label: str) -> str:
    """Value after ``label`` on the same line, stripped of markup and quotes."""
    match = re.search(r"\b" + label + r"\b[*: \t]*([^\n]+)", block, re.IGNORECASE)
    if not match:
        return ""
    return match.group(1).strip().strip("*").strip().strip(_QUOTES).strip()


def parse_bullet_points(text: str) -> List[str]:
    if not text:
        return []
    items = []
    for line in text.split("\n"):
        line = line.strip()
        if _BULLET.match(line):
            item = _BULLET.sub("", line).strip()
            if item:
                items.append(item)
    return items


def parse_list_flexible(text: str) -> List[str]:
    """Bullets if there are any, else lines, else separator-split, else the whole text."""
    bullets = parse_bullet_points(text)
    if bullets:
        return bullets

    raw = (text or "").strip()
    lines = [line.strip() for line in raw.split("\n") if line.strip()]
    if len(lines) > 1:
        return lines
    if not raw:
        return []

    parts = [part.strip() for part in _LIST_SEPARATORS.split(raw) if part.strip()]
    if len(parts) > 1:
        return parts
    return [raw]


def parse_missed_events(text: str) -> Dict[str, List[str]]:
    """Group missed insights by provider; unattributed ones land under ``global``."""
    result: Dict[str, List[str]] = {}
    for item in parse_list_flexible(text):
        for segment in _MISSED_SEGMENT_SPLIT.split(item):
            line = segment.strip()
            if not line:
                continue
            match = _PROVIDER_BOLD.match(line) or _PROVIDER_POSSESSIVE.match(line)
            if match:
                key, content = match.group(1).strip().lower(), match.group(2).strip()
            else:
                key, content = "global", line
            bucket = result.setdefault(key, [])
            if content not in bucket:
                bucket.append(content)
    return result


# ---------------------------------------------------------------------------
# Heuristic extractors
# ---------------------------------------------------------------------------

def extract_confidence_score(text: str) -> float:
    match = _CONFIDENCE.search(text)
    if not match:
        return DEFAULT_CONFIDENCE
    return clamp_confidence(match.group(1))


def extract_presentation_strategy(text: str) -> str:
    match = _STRATEGY.search(text)
    return match.group(1) if match else DEFAULT_PRESENTATION_STRATEGY


def extract_section(text: str, section_name: str, subsection: Optional[str] = None) -> str:
    """Text following an inline label (``**Name**: ...``) or a ``## Name`` heading."""
    name = re.escape(section_name)

    if subsection:
        parent = re.search(
            r"(?:^|\n)#{1,3}\s*" + name + r"[^\n]*\n([\s\S]*?)(?=\n#{1,3}|\Z)", text, re.IGNORECASE
        )
        scope = parent.group(1) if parent else text
        sub = re.escape(subsection)
        inline = re.search(
            r"\*{0,2}\s*" + sub + r"\s*\*{0,2}\s*:?\s*([\s\S]*?)(?=\n\*\*|\n#{1,3}|\n---|\Z)", scope, re.IGNORECASE
        )
        return inline.group(1).strip() if inline else ""

    inline = re.search(
        r"\*{0,2}\s*" + name + r"\s*\*{0,2}\s*:?\s*([\s\S]*?)(?=\n\*\*|\n#{1,3}|\n---|\Z)", text, re.IGNORECASE
    )
    if inline and inline.group(1).strip():
        return inline.group(1).strip()

    header = re.search(
        r"(?:^|\n)#{1,3}\s*" + name + r"[^\n]*\n([\s\S]*?)(?=\n#{1,3}|\n\*\*[A-Z]|\n---|\Z)", text, re.IGNORECASE
    )
    return header.group(1).strip() if header else ""


def extract_gaps(text: str) -> List[Gap]:
    content = _section_body(text, "gaps")
    if content is None or re.search(r"unusually\s+complete", content, re.IGNORECASE):
        return []

    gaps = [
        Gap(title=m.group(2).strip(), explanation=m.group(3).strip(), category=m.group(1).lower())
        for m in _GAP_WITH_CATEGORY.finditer(content)
    ]
    if gaps:
        return gaps
    return [
        Gap(title=m.group(1).strip(), explanation=m.group(2).strip())
        for m in _GAP_LEGACY.finditer(content)
    ]


def _list_block(content: str, label: str, others: List[str]) -> Optional[str]:
    stop = "|".join(others)
    line_start = r"(?:^|\n)[ \t]*(?:[-*•][ \t]*)?\**[ \t]*"
    match = re.search(
        line_start + label + r"\b\**[ \t]*:?\**[ \t]*([^\n]*(?:\n(?![ \t]*(?:[-*•][ \t]*)?\**[ \t]*(?:" + stop + r"))[^\n]*)*)",
        content,
        re.IGNORECASE,
    )
    return match.group(1) if match else None


def extract_synthesis_accuracy(text: str) -> Optional[SynthesisAccuracy]:
    content = _section_body(text, "synthesis")
    if content is None:
        return None

    preserved = _list_block(content, "preserved", ["overclaimed", "missed"])
    overclaimed = _list_block(content, "overclaimed", ["preserved", "missed"])
    missed = _list_block(content, "missed", ["preserved", "overclaimed"])
    if preserved is None and overclaimed is None and missed is None:
        return None

    return SynthesisAccuracy(
        preserved=parse_list_flexible(preserved) if preserved is not None else [],
        overclaimed=parse_list_flexible(overclaimed) if overclaimed is not None else [],
        missed=parse_missed_events(missed) if missed is not None else {},
    )


def extract_verification_triggers(text: str) -> List[VerificationTrigger]:
    content = _section_body(text, "triggers")
    if content is None or re.search(r"none\s+(?:required|needed)", content, re.IGNORECASE):
        return []

    triggers = []
    for block in re.split(r"\n\s*\n", content):
        claim = _label_value(block, "claim")
        why = _label_value(block, "why")
        source_type = _label_value(block, r"source(?:\s+type)?")
        if claim or why or source_type:
            triggers.append(VerificationTrigger(claim=claim, why=why, source_type=source_type))
    return triggers


def extract_reframing_suggestion(text: str) -> Optional[ReframingSuggestion]:
    content = _section_body(text, "reframing")
    if content is None:
        return None
    if re.search(r"only\s+if|not\s+needed", content, re.IGNORECASE) and len(content) < 100:
        return None

    issue = _label_value(content, "issue")
    better_question = _label_value(content, r"better\s+question")
    unlocks = _label_value(content, "unlocks")
    if not (issue or better_question or unlocks):
        return None
    return ReframingSuggestion(issue=issue, better_question=better_question, unlocks=unlocks)


def extract_mapper_audit(text: str) -> Optional[MapperAudit]:
    content = _section_body(text, "mapper_audit")
    if content is None:
        return None
    if re.search(r"complete.*no\s+unlisted", content, re.IGNORECASE):
        return MapperAudit(complete=True, unlisted_options=[])

    options = [
        UnlistedOption(title=m.group(1).strip(), description=m.group(2).strip(), source_provider=m.group(3).strip())
        for m in _UNLISTED_OPTION.finditer(content)
    ]
    return MapperAudit(complete=not options, unlisted_options=options)


def extract_honest_assessment(text: str) -> Union[str, HonestAssessment]:
    content = _section_body(text, "honest")
    if content is None:
        return ""

    summary = re.search(r"\*\*reliability\s+summary\*\*[:\s]*([^\n]+)", content, re.IGNORECASE)
    risk = re.search(r"\*\*biggest\s+risk\*\*[:\s]*([^\n]+)", content, re.IGNORECASE)
    next_step = re.search(r"\*\*recommended\s+next\s+step\*\*[:\s]*([^\n]+)", content, re.IGNORECASE)
    if summary or risk or next_step:
        return HonestAssessment(
            reliability_summary=summary.group(1).strip() if summary else "",
            biggest_risk=risk.group(1).strip() if risk else "",
            recommended_next_step=next_step.group(1).strip() if next_step else "",
        )
    return content.strip()


# ---------------------------------------------------------------------------
# Structured route
# ---------------------------------------------------------------------------

def _normalize_gap(item: Any) -> Optional[Gap]:
    if isinstance(item, str):
        return Gap(title=item.strip(), explanation="") if item.strip() else None
    if not isinstance(item, dict):
        return None
    category = _as_str(item.get("category")).lower() or None
    return Gap(
        title=_as_str(_pick(item, "title", "gap", default="")).strip(),
        explanation=_as_str(_pick(item, "explanation", "description", default="")).strip(),
        category=category if category in GAP_CATEGORIES else None,
    )


def _normalize_missed(missed: Any) -> Dict[str, List[str]]:
    # Older outputs used a flat list; current ones key by provider.
    if isinstance(missed, list):
        return {"global": [_as_str(m) for m in missed]}
    if isinstance(missed, dict):
        result: Dict[str, List[str]] = {}
        for provider, items in missed.items():
            values = items if isinstance(items, list) else [items]
            result[_as_str(provider).lower()] = [_as_str(v) for v in values]
        return result
    return {}


def _normalize_synthesis(obj: Any) -> Optional[SynthesisAccuracy]:
    if not isinstance(obj, dict):
        return None
    missed_insights = []
    for item in _as_list(_pick(obj, "missedFromSynthesis", "missed_from_synthesis")):
        if isinstance(item, dict):
            missed_insights.append(MissedInsight(
                insight=_as_str(item.get("insight")),
                provider=_as_str(item.get("provider")),
                in_mapper_options=bool(_pick(item, "inMapperOptions", "in_mapper_options", default=False)),
            ))
    return SynthesisAccuracy(
        preserved=[_as_str(v) for v in _as_list(obj.get("preserved")) if v is not None],
        overclaimed=[_as_str(v) for v in _as_list(obj.get("overclaimed")) if v is not None],
        missed=_normalize_missed(obj.get("missed")),
        missed_from_synthesis=missed_insights,
    )


def _normalize_honest(value: Any) -> Union[str, HonestAssessment]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return HonestAssessment(
            reliability_summary=_as_str(_pick(value, "reliabilitySummary", "reliability_summary", default="")),
            biggest_risk=_as_str(_pick(value, "biggestRisk", "biggest_risk", default="")),
            recommended_next_step=_as_str(_pick(value, "recommendedNextStep", "recommended_next_step", default="")),
        )
    return ""


def _normalize_triggers(value: Any) -> List[VerificationTrigger]:
    if not isinstance(value, list):
        return []
    return [
        VerificationTrigger(
            claim=_as_str(item.get("claim")),
            why=_as_str(item.get("why")),
            source_type=_as_str(_pick(item, "sourceType", "source_type", default="")),
        )
        for item in value if isinstance(item, dict)
    ]


def _normalize_reframing(value: Any) -> Optional[ReframingSuggestion]:
    if not isinstance(value, dict):
        return None
    return ReframingSuggestion(
        issue=_as_str(value.get("issue")),
        better_question=_as_str(_pick(value, "betterQuestion", "better_question", default="")),
        unlocks=_as_str(value.get("unlocks")),
    )


def _normalize_mapper_audit(value: Any) -> Optional[MapperAudit]:
    if not isinstance(value, dict):
        return None
    options = [
        UnlistedOption(
            title=_as_str(item.get("title")),
            description=_as_str(item.get("description")),
            source_provider=_as_str(_pick(item, "sourceProvider", "source_provider", default="")),
        )
        for item in _as_list(_pick(value, "unlistedOptions", "unlisted_options"))
        if isinstance(item, dict)
    ]
    complete = value.get("complete")
    return MapperAudit(
        complete=bool(complete) if isinstance(complete, bool) else not options,
        unlisted_options=options,
    )


def normalize_audit_object(obj: Dict[str, Any]) -> Optional[AuditReport]:
    """Map a decoded object onto ``AuditReport``; None when it lacks every fingerprint key."""
    if not isinstance(obj, dict) or not any(key in obj for key in FINGERPRINT_KEYS):
        return None

    raw_gaps = obj.get("gaps")
    gaps = [g for g in (_normalize_gap(i) for i in raw_gaps) if g] if isinstance(raw_gaps, list) else []
    raw_signals = obj.get("signals")
    signals: List[Signal] = (
        [s for s in (normalize_signal(i) for i in raw_signals) if s] if isinstance(raw_signals, list) else []
    )
    meta_pattern = _pick(obj, "metaPattern", "meta_pattern")

    return AuditReport(
        confidence_score=clamp_confidence(_pick(obj, "confidenceScore", "confidence_score")),
        rationale=_as_str(obj.get("rationale")),
        presentation_strategy=_as_str(_pick(obj, "presentationStrategy", "presentation_strategy"))
        or DEFAULT_PRESENTATION_STRATEGY,
        strategy_rationale=_as_str(_pick(obj, "strategyRationale", "strategy_rationale")),
        gaps=gaps,
        signals=signals,
        honest_assessment=_normalize_honest(_pick(obj, "honestAssessment", "honest_assessment")),
        meta_pattern=_as_str(meta_pattern) if meta_pattern is not None else None,
        synthesis_accuracy=_normalize_synthesis(_pick(obj, "synthesisAccuracy", "synthesis_accuracy")),
        verification_triggers=_normalize_triggers(_pick(obj, "verificationTriggers", "verification_triggers")),
        reframing_suggestion=_normalize_reframing(_pick(obj, "reframingSuggestion", "reframing_suggestion")),
        mapper_audit=_normalize_mapper_audit(_pick(obj, "mapperAudit", "mapper_audit")),
        source="json",
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_audit_report(text: Optional[str]) -> AuditReport:
    """
    Parse an audit pass into an ``AuditReport``.

    Structured JSON (fenced, double-encoded, or surrounded by prose) is
    preferred; otherwise each section is read independently from markdown.

    Args:
        text: Raw or partially streamed model output

    Returns:
        A report; every field is defaulted when nothing is recognizable
    """
    if not text or not isinstance(text, str):
        return AuditReport()

    normalized = normalize_text(text)

    decoded = load_structured(normalized)
    if decoded is not None:
        report = normalize_audit_object(decoded)
        if report is not None:
            return report
        logger.debug("Decoded object lacks audit fingerprint keys; using section extractors")

    report = AuditReport(
        confidence_score=extract_confidence_score(normalized),
        rationale=extract_section(normalized, "rationale"),
        presentation_strategy=extract_presentation_strategy(normalized),
        strategy_rationale=extract_section(normalized, "presentation strategy", "why"),
        gaps=extract_gaps(normalized),
        honest_assessment=extract_honest_assessment(normalized),
        meta_pattern=extract_section(normalized, "meta-pattern") or None,
        synthesis_accuracy=extract_synthesis_accuracy(normalized),
        verification_triggers=extract_verification_triggers(normalized),
        reframing_suggestion=extract_reframing_suggestion(normalized),
        mapper_audit=extract_mapper_audit(normalized),
        source="heuristic",
    )
    report.signals = derive_signals(report)
    return report
