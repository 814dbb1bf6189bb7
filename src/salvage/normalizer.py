"""
Text normalization applied before any header or delimiter matching.

Model output frequently arrives with markdown-escaped punctuation
(``\\=``, ``\\_``) and with Unicode characters that render like ``=``.
Both break the ``===SECTION===`` delimiters the locators look for.
"""

from __future__ import annotations

import re

# Escaped markdown punctuation we un-escape.
_ESCAPED_PUNCTUATION = re.compile(r"\\([=_*\-])")

# Characters that render as (or like) an equals sign.
EQUALS_LOOKALIKES = (
    "\uFF1D"  # FULLWIDTH EQUALS SIGN
    "\u2550"  # BOX DRAWINGS DOUBLE HORIZONTAL
    "\u207C"  # SUPERSCRIPT EQUALS SIGN
    "\u02ED"  # MODIFIER LETTER UNASPIRATED
    "\uA4FF"  # LISU PUNCTUATION FULL STOP
    "\uFE66"  # SMALL EQUALS SIGN
    "\u2017"  # DOUBLE LOW LINE
    "\u208C"  # SUBSCRIPT EQUALS SIGN
)
_LOOKALIKE_TABLE = str.maketrans({ch: "=" for ch in EQUALS_LOOKALIKES})


def normalize_text(text: str) -> str:
    """Return ``text`` with escaped punctuation and ``=`` look-alikes canonicalized.

    Total and idempotent: ``normalize_text(normalize_text(x)) == normalize_text(x)``.
    ``None`` is treated as the empty string.
    """
    if not text:
        return ""
    if not isinstance(text, str):
        text = str(text)
    # Look-alikes first: "\＝" must end up as "=", not "\=".
    text = text.translate(_LOOKALIKE_TABLE)
    # Repeat until stable so doubled escapes collapse fully.
    previous = None
    while previous != text:
        previous = text
        text = _ESCAPED_PUNCTUATION.sub(r"\1", text)
    return text
