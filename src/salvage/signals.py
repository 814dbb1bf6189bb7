"""
Signal helpers for audit reports.

A signal is one flagged item (divergence, overclaim, gap, blindspot) with
a priority of blocker, risk or enhancement. All helpers accept ``None``
so renderers can call them on a report that has not arrived yet.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .models import AuditReport, HonestAssessment, SIGNAL_PRIORITIES, Signal

_GAP_PRIORITY = {"foundational": "blocker", "tactical": "risk"}


def normalize_signal(item: Any) -> Optional[Signal]:
    """Build a Signal from a decoded dict; unknown priorities become ``enhancement``."""
    if not isinstance(item, dict):
        return None
    content = item.get("content") or item.get("text") or item.get("description") or ""
    if not content:
        return None
    priority = str(item.get("priority") or "").lower()
    return Signal(
        type=str(item.get("type") or "gap").lower(),
        priority=priority if priority in SIGNAL_PRIORITIES else "enhancement",
        content=str(content),
        source=str(item.get("source") or ""),
        impact=str(item.get("impact") or ""),
    )


def derive_signals(report: AuditReport) -> List[Signal]:
    """Signals implied by a report read from markdown, which never lists them explicitly."""
    signals: List[Signal] = []
    for gap in report.gaps:
        content = f"{gap.title}: {gap.explanation}" if gap.explanation else gap.title
        signals.append(Signal(type="gap", priority=_GAP_PRIORITY.get(gap.category or "", "enhancement"), content=content))

    accuracy = report.synthesis_accuracy
    if accuracy is not None:
        for claim in accuracy.overclaimed:
            signals.append(Signal(type="overclaim", priority="risk", content=claim))
        for provider, items in accuracy.missed.items():
            source = "" if provider == "global" else provider
            for item in items:
                signals.append(Signal(type="blindspot", priority="enhancement", content=item, source=source))

    return signals


def categorize_signals(signals: Optional[Iterable[Signal]]) -> Dict[str, List[Signal]]:
    signals = list(signals or [])
    return {priority: [s for s in signals if s.priority == priority] for priority in SIGNAL_PRIORITIES}


def signal_counts(signals: Optional[Iterable[Signal]]) -> Dict[str, int]:
    return {priority: len(items) for priority, items in categorize_signals(signals).items()}


def has_critical_signals(signals: Optional[Iterable[Signal]]) -> bool:
    return any(s.priority in ("blocker", "risk") for s in signals or [])


def _signals(report: Optional[AuditReport]) -> List[Signal]:
    return list(report.signals) if report is not None else []


def has_blocker_signal(report: Optional[AuditReport]) -> bool:
    return any(s.priority == "blocker" for s in _signals(report))


def needs_verification(report: Optional[AuditReport]) -> bool:
    """True when a blocker or a model divergence was flagged."""
    return any(s.priority == "blocker" or s.type == "divergence" for s in _signals(report))


def verification_items(report: Optional[AuditReport]) -> List[Signal]:
    return [s for s in _signals(report) if s.priority in ("blocker", "risk")]


def signals_of_type(report: Optional[AuditReport], signal_type: str) -> List[Signal]:
    return [s for s in _signals(report) if s.type == signal_type]


def gap_signals(report: Optional[AuditReport]) -> List[Signal]:
    """Gaps and blindspots together."""
    return [s for s in _signals(report) if s.type in ("gap", "blindspot")]


def summarize_assessment(report: Optional[AuditReport]) -> HonestAssessment:
    """Structured assessment from the report, or one synthesized from its signals."""
    if report is None:
        return HonestAssessment()
    if isinstance(report.honest_assessment, HonestAssessment):
        return report.honest_assessment

    counts = signal_counts(report.signals)
    blockers = counts["blocker"]
    risks = counts["risk"]
    if blockers:
        summary = f"{blockers} blocker signal{'s' if blockers > 1 else ''} detected"
    elif risks:
        summary = f"{risks} risk signal{'s' if risks > 1 else ''} worth reviewing"
    else:
        summary = report.honest_assessment or "Output appears reliable"

    top = verification_items(report)
    top.sort(key=lambda s: SIGNAL_PRIORITIES.index(s.priority))
    return HonestAssessment(
        reliability_summary=summary,
        biggest_risk=top[0].content if top else "",
        recommended_next_step="",
    )
