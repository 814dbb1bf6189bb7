"""Tests for scripts/inspect_response.py (run as a subprocess)."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SCRIPT = PROJECT_ROOT / "scripts" / "inspect_response.py"


def _run(*args, stdin=None):
    result = subprocess.run(
        [sys.executable, str(SCRIPT), *args],
        input=stdin,
        capture_output=True,
        text=True,
        cwd=str(PROJECT_ROOT),
    )
    assert result.returncode == 0, result.stderr
    return json.loads(result.stdout)


class TestInspectResponse:
    def test_mapping_from_stdin(self):
        """Mapping mode reads stdin and prints the split as JSON."""
        out = _run("mapping", stdin='intro\n===GRAPH_TOPOLOGY===\n{"nodes": []}')
        assert out["narrative"] == "intro"
        assert out["graph_topology"] == {"nodes": []}

    def test_legacy_from_file(self, tmp_path):
        """Legacy mode stamps the turn metadata on the converted graph."""
        path = tmp_path / "response.md"
        graph = {"claims": [{"id": "c1", "stance": "assertive", "sourceStatementIds": ["s_2"]}]}
        path.write_text("Summary.\n```json\n" + json.dumps(graph) + "\n```", encoding="utf-8")
        out = _run("legacy", str(path), "--query", "q", "--turn", "2", "--models", "3")
        assert out["success"] is True
        assert out["qa"]["status"] == "OK"
        assert out["legacy"]["claims"][0]["supporters"] == [2]
        assert out["legacy"]["turn"] == 2

    def test_brackets(self):
        """Brackets mode lists placeholders and the default prompt."""
        out = _run("brackets", stdin="Use [tone: formal/casual] voice")
        assert out["default_prompt"] == "Use formal voice"
        assert out["brackets"][0]["variable"] == "tone"

    def test_rejects_unknown_mode(self):
        """An unknown mode is an argparse error."""
        result = subprocess.run(
            [sys.executable, str(SCRIPT), "nonsense"], capture_output=True, text=True, cwd=str(PROJECT_ROOT)
        )
        assert result.returncode != 0

    @pytest.mark.parametrize("mode", ["audit", "graph", "artifacts"])
    def test_modes_accept_empty_input(self, mode):
        """Every mode prints JSON for empty input."""
        assert isinstance(_run(mode, stdin=""), dict)
