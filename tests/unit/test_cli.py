"""
Unit tests for the command line interface.

Tests cover:
- diff output and exit codes
- plan output and plan files
- normalize, status, validate and rollback commands
"""

import json
import tempfile
from pathlib import Path

import pytest

from schemasync.config import Settings
from schemasync.tools.cli import run_cli

DESIRED = """
tables:
  - name: user
    fields:
      - name: email
        type: string
"""

LIVE_EXTRA = """
tables:
  - name: user
    fields:
      - name: email
        type: string
      - name: nickname
        type: string
"""


class TestCLI:
    """Tests for run_cli."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def settings(self, data_dir):
        """Settings pointing the ledger at the temporary directory."""
        return Settings(_env_file=None, ledger_path=str(data_dir / "ledger.db"), log_format="text")

    @pytest.fixture
    def files(self, data_dir):
        """Write schema files and return their paths by name."""
        paths = {}
        for name, content in (("desired", DESIRED), ("empty", "tables: []\n"), ("extra", LIVE_EXTRA)):
            path = data_dir / f"{name}.yaml"
            path.write_text(content, encoding="utf-8")
            paths[name] = str(path)
        return paths

    def test_diff_additive(self, settings, files, capsys):
        """Additive changes exit 0."""
        code = run_cli(["diff", "-d", files["desired"], "-l", files["empty"]], settings)

        out = capsys.readouterr().out
        assert code == 0
        assert "Found 1 change(s):" in out
        assert "[OK] ADD table:user" in out
        assert "DESTRUCTIVE" not in out

    def test_diff_destructive(self, settings, files, capsys):
        """A REMOVE makes diff exit 1."""
        code = run_cli(["diff", "-d", files["desired"], "-l", files["extra"]], settings)

        out = capsys.readouterr().out
        assert code == 1
        assert "Found 1 change(s):" in out
        assert "[DESTRUCTIVE]" in out

    def test_diff_no_changes(self, settings, files, capsys):
        """Identical schemas report no changes."""
        code = run_cli(["diff", "-d", files["desired"], "-l", files["desired"]], settings)

        assert code == 0
        assert "No changes detected" in capsys.readouterr().out

    def test_diff_json(self, settings, files, capsys):
        """JSON output is machine readable."""
        run_cli(["diff", "-d", files["desired"], "-l", files["empty"], "--format", "json"], settings)

        data = json.loads(capsys.readouterr().out)
        assert isinstance(data, dict)

    def test_plan(self, settings, files, capsys):
        """plan prints the up statements under a header."""
        code = run_cli(["plan", "-d", files["desired"], "-l", files["empty"]], settings)

        lines = capsys.readouterr().out.splitlines()
        assert code == 0
        assert lines[0].startswith("-- plan ")
        assert lines[1:] == [
            "DEFINE TABLE user TYPE NORMAL SCHEMAFULL;",
            "DEFINE FIELD email ON TABLE user TYPE string;",
        ]

    def test_plan_output_file(self, settings, files, data_dir, capsys):
        """plan -o writes the plan as JSON."""
        output = data_dir / "plan.json"
        run_cli(["plan", "-d", files["desired"], "-l", files["extra"], "-o", str(output)], settings)

        plan = json.loads(output.read_text(encoding="utf-8"))
        assert plan["up_statements"] == ["REMOVE FIELD nickname ON TABLE user;"]
        assert plan["down_statements"] == ["DEFINE FIELD nickname ON TABLE user TYPE string;"]
        assert plan["checksum"].startswith("sha256:")
        assert "written to" in capsys.readouterr().err

    def test_plan_nothing_to_do(self, settings, files, capsys):
        """Matching schemas produce an empty plan."""
        run_cli(["plan", "-d", files["desired"], "-l", files["desired"]], settings)
        assert "-- nothing to do" in capsys.readouterr().out

    def test_normalize(self, settings, files, capsys):
        """normalize prints the canonical YAML document."""
        code = run_cli(["normalize", files["desired"]], settings)

        out = capsys.readouterr().out
        assert code == 0
        assert "name: user" in out
        assert "name: email" in out

    def test_status_empty(self, settings, capsys):
        """status on a fresh ledger shows the target with no history."""
        code = run_cli(["status"], settings)

        assert code == 0
        assert capsys.readouterr().out.strip() == "Target: default"

    def test_validate_empty(self, settings, capsys):
        """An empty ledger is valid."""
        code = run_cli(["validate"], settings)

        assert code == 0
        assert "Ledger is valid (0 entries checked)" in capsys.readouterr().out

    def test_rollback_nothing_applied(self, settings, capsys):
        """Rolling back without an applied migration fails."""
        code = run_cli(["rollback"], settings)

        assert code == 1
        assert "No applied migration" in capsys.readouterr().err

    def test_missing_file(self, settings, files, data_dir, capsys):
        """Unreadable schema files are reported, not raised."""
        code = run_cli(["diff", "-d", str(data_dir / "nope.yaml"), "-l", files["empty"]], settings)

        assert code == 1
        assert "Cannot read schema file" in capsys.readouterr().err
