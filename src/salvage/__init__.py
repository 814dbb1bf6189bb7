"""
Salvage - resilient extraction of structure from model responses.

Every parser here accepts whatever text has arrived so far and returns a
best-effort, partially populated result; none of them raise on bad input.

Modules:
    normalizer - Escape and look-alike cleanup applied before any matching
    sections - Header cascades and the section locator
    scanner - Balanced-brace object scanner with one token repair
    tolerant - Fence stripping, double-encoding unwrap, structured-first decode
    mapping - Narrative / options / graph topology split
    audit - Refiner audit report parsing (JSON first, then section heuristics)
    signals - Signal derivation and query helpers
    claim_graph - Claim graph parsing, version detection and QA
    adapter - Current-to-legacy claim graph conversion
    artifacts - Document block extraction and MIME classification
    prompt_brackets - Bracketed-variable prompt templates
    config - Optional YAML overrides for the locator
"""

from . import normalizer
from . import sections
from . import scanner
from . import tolerant
from . import mapping
from . import audit
from . import signals
from . import claim_graph
from . import adapter
from . import artifacts
from . import prompt_brackets
from . import config

from .adapter import convert_current_to_legacy, ensure_legacy
from .artifacts import extract_artifacts
from .audit import parse_audit_report
from .claim_graph import parse_claim_graph, qa_claim_graph
from .mapping import extract_graph_topology_and_strip, extract_options_and_strip, parse_mapping_response
from .models import SalvageError
from .normalizer import normalize_text
from .prompt_brackets import build_final_prompt, parse_brackets

__version__ = "0.1.0"
