"""
Bracketed-variable prompt templates.

A refined prompt may carry placeholders such as ``[tone: formal/casual]``.
``parse_brackets`` lists them with their spans in the original template;
``build_final_prompt`` substitutes selections in one pass over those spans.
"""

from __future__ import annotations

import re
from typing import List, Mapping, Optional

from .models import Bracket, SalvageError

_PLACEHOLDER = re.compile(r"\[([^\[\]:/]+):\s*([^\[\]]+)\]")


def _split_options(raw: str) -> List[str]:
    return [opt.strip() for opt in raw.split("/") if opt.strip()]


def parse_brackets(template: Optional[str]) -> List[Bracket]:
    """
    Find every placeholder in ``template``.

    Brackets with fewer than two options (``[Note: see above]``) are left
    alone as ordinary prose.
    """
    if not template or not isinstance(template, str):
        return []

    brackets = []
    for match in _PLACEHOLDER.finditer(template):
        variable = match.group(1).strip()
        options = _split_options(match.group(2))
        if not variable or len(options) < 2:
            continue
        brackets.append(Bracket(
            variable=variable,
            options=options,
            start_index=match.start(),
            end_index=match.end(),
        ))
    return brackets


def build_final_prompt(template: Optional[str], selections: Optional[Mapping[str, str]] = None,
                       brackets: Optional[List[Bracket]] = None) -> str:
    """
    Replace each placeholder with its selection, or its first option.

    Args:
        template: Template text the brackets were parsed from
        selections: variable -> chosen value; values need not be one of the options
        brackets: Pre-parsed brackets for ``template``; parsed here when omitted

    Returns:
        The concrete prompt. Substituted text is never rescanned.
    """
    if not template or not isinstance(template, str):
        return ""
    if selections is None:
        selections = {}
    if not isinstance(selections, Mapping):
        raise SalvageError(f"selections must be a mapping, got {type(selections).__name__}")
    if brackets is None:
        brackets = parse_brackets(template)

    pieces = []
    cursor = 0
    for bracket in sorted(brackets, key=lambda b: b.start_index):
        if bracket.start_index < cursor:
            continue
        chosen = selections.get(bracket.variable)
        pieces.append(template[cursor:bracket.start_index])
        pieces.append(str(chosen) if chosen is not None else bracket.options[0])
        cursor = bracket.end_index
    pieces.append(template[cursor:])
    return "".join(pieces)
