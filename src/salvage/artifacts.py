"""
Artifact extraction.

Providers embed rich content (SVG, HTML, markdown, code files) in a
response as ``<document title="..." identifier="...">...</document>``
blocks. ``extract_artifacts`` lifts them out and classifies each one.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from .models import Artifact, ArtifactExtraction

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Artifact"
DEFAULT_MIME_TYPE = "text/plain"

_DOCUMENT_BLOCK = re.compile(r"<document\s+([^>]+)>([\s\S]*?)</document>")
_ATTRIBUTE = re.compile(r'(\w+)="([^"]*)"')

# Checked in order; ``.html`` and ``.htm`` share a type.
EXTENSION_MIME_TYPES = (
    (".md", "text/markdown"),
    (".svg", "image/svg+xml"),
    (".html", "text/html"),
    (".htm", "text/html"),
    (".py", "text/x-python"),
    (".js", "application/javascript"),
    (".json", "application/json"),
    (".xml", "application/xml"),
    (".css", "text/css"),
)


def parse_attributes(attr_string: str) -> Dict[str, str]:
    return {m.group(1): m.group(2) for m in _ATTRIBUTE.finditer(attr_string)}


def detect_mime_type(content: str, identifier: Optional[str] = None) -> str:
    """
    Classify a block without an explicit type.

    The identifier's file extension wins; otherwise the content signature
    decides, falling back to plain text.
    """
    if identifier:
        lowered = identifier.lower()
        for extension, mime_type in EXTENSION_MIME_TYPES:
            if lowered.endswith(extension):
                return mime_type

    trimmed = (content or "").strip()
    if trimmed.startswith("<svg"):
        return "image/svg+xml"
    if trimmed.startswith("<!DOCTYPE html") or "<html" in trimmed:
        return "text/html"
    if trimmed.startswith("```"):
        return "text/markdown"
    return DEFAULT_MIME_TYPE


def extract_artifacts(text: Optional[str]) -> ArtifactExtraction:
    """
    Pull every document block out of ``text``.

    Returns:
        ArtifactExtraction with the remaining text and the artifacts in
        document order. Blocks without an identifier get ``artifact-<n>``,
        n being the block's 1-based position, so repeated parses agree.
    """
    if not text or not isinstance(text, str):
        return ArtifactExtraction()

    artifacts: List[Artifact] = []
    pieces: List[str] = []
    cursor = 0

    for ordinal, match in enumerate(_DOCUMENT_BLOCK.finditer(text), start=1):
        attributes = parse_attributes(match.group(1))
        content = match.group(2)
        identifier = attributes.get("identifier") or f"artifact-{ordinal}"
        artifacts.append(Artifact(
            title=attributes.get("title") or DEFAULT_TITLE,
            identifier=identifier,
            content=content.strip(),
            mime_type=attributes.get("type") or detect_mime_type(content, identifier),
        ))
        pieces.append(text[cursor:match.start()])
        cursor = match.end()

    if not artifacts:
        return ArtifactExtraction(clean_text=text.strip())

    pieces.append(text[cursor:])
    logger.debug(f"Extracted {len(artifacts)} artifact(s)")
    return ArtifactExtraction(clean_text="".join(pieces).strip(), artifacts=artifacts)


def format_artifact(artifact: Artifact) -> str:
    """Serialize an artifact back into the block form ``extract_artifacts`` reads."""
    return (
        f'\n\n<document title="{artifact.title}" identifier="{artifact.identifier}">\n'
        f"{artifact.content}\n</document>"
    )


def inject_images(text: str, images: Iterable[Dict[str, str]]) -> str:
    """
    Replace ``[Image of <title>]`` placeholders with markdown images.

    Images whose placeholder is missing are appended at the end.
    """
    if not text:
        return text
    for image in images or []:
        title = image.get("title", "")
        markdown = f"![{title}]({image.get('url', '')})"
        pattern = re.compile(r"\[Image of " + re.escape(title) + r"\]")
        if pattern.search(text):
            text = pattern.sub(lambda _: markdown, text)
        else:
            text = f"{text}\n\n{markdown}"
    return text
