#!/usr/bin/env python3
"""
Run one of the salvage parsers over a saved model response and print JSON.

Usage:
    python scripts/inspect_response.py audit response.md
    python scripts/inspect_response.py legacy response.md --query "..." --turn 3 --models 4
    cat response.md | python scripts/inspect_response.py mapping
"""

import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from salvage.adapter import ensure_legacy
from salvage.artifacts import extract_artifacts
from salvage.audit import parse_audit_report
from salvage.claim_graph import parse_claim_graph, qa_claim_graph
from salvage.logging_config import configure_logging
from salvage.mapping import parse_mapping_response
from salvage.models import ClaimGraph, TurnMetadata
from salvage.prompt_brackets import build_final_prompt, parse_brackets

MODES = ("mapping", "audit", "graph", "legacy", "artifacts", "brackets")


def inspect(mode: str, text: str, args: argparse.Namespace) -> dict:
    if mode == "mapping":
        return parse_mapping_response(text).to_dict()

    if mode == "audit":
        return parse_audit_report(text).to_dict()

    if mode in ("graph", "legacy"):
        result = parse_claim_graph(text)
        out = result.to_dict()
        if result.success and isinstance(result.graph, ClaimGraph):
            out["qa"] = qa_claim_graph(result.graph)
        if mode == "legacy" and result.success:
            metadata = TurnMetadata(query=args.query, turn=args.turn, model_count=args.models)
            out["legacy"] = ensure_legacy(result.graph, None, metadata).to_dict()
        return out

    if mode == "artifacts":
        return extract_artifacts(text).to_dict()

    brackets = parse_brackets(text)
    return {
        "brackets": [b.to_dict() for b in brackets],
        "default_prompt": build_final_prompt(text, {}, brackets),
    }


def main():
    parser = argparse.ArgumentParser(description="Inspect what salvage recovers from a model response")
    parser.add_argument("mode", choices=MODES, help="Parser to run")
    parser.add_argument("path", nargs="?", help="Response file (default: stdin)")
    parser.add_argument("--query", default="", help="Query text stamped on legacy graphs")
    parser.add_argument("--turn", type=int, default=0, help="Turn number stamped on legacy graphs")
    parser.add_argument("--models", type=int, default=0, help="Participant count stamped on legacy graphs")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.path:
        with open(args.path, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        text = sys.stdin.read()

    print(json.dumps(inspect(args.mode, text, args), indent=2, default=str))


if __name__ == '__main__':
    main()
