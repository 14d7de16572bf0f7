"""
Tests for the borrowtrace command-line interface.

Tests cover argument parsing, output modes, query flags, exit codes
and error handling, all through real CLI invocations.
"""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

from borrowtrace.core.graph import build_graph
from borrowtrace.utils.export import write_export


def _run_cli(*args: str, timeout: int = 30) -> subprocess.CompletedProcess[str]:
    """Run the borrowtrace CLI as a subprocess."""
    cmd = [sys.executable, "-m", "borrowtrace", *args]
    return subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        timeout=timeout,
    )


@pytest.fixture
def clean_export(tmp_path: Path, scenario_shared_borrows) -> str:
    path = tmp_path / "clean.json"
    write_export(path, build_graph(scenario_shared_borrows), scenario_shared_borrows)
    return str(path)


@pytest.fixture
def conflict_export(tmp_path: Path, scenario_use_after_move) -> str:
    path = tmp_path / "conflict.json"
    write_export(path, build_graph(scenario_use_after_move), scenario_use_after_move)
    return str(path)


# ---------------------------------------------------------------------------
# Tests: Required Arguments
# ---------------------------------------------------------------------------


class TestRequiredArguments:
    """Test that required arguments are enforced."""

    def test_no_arguments(self) -> None:
        """No arguments exits with code 2."""
        result = _run_cli()
        assert result.returncode == 2

    def test_active_requires_at(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "--active", "1")
        assert result.returncode == 2
        assert "--at" in result.stderr

    def test_version(self) -> None:
        result = _run_cli("--version")
        assert result.returncode == 0
        assert result.stdout.startswith("borrowtrace ")


# ---------------------------------------------------------------------------
# Tests: Error Handling
# ---------------------------------------------------------------------------


class TestErrorHandling:
    """Test error handling for invalid inputs."""

    def test_nonexistent_input(self) -> None:
        result = _run_cli("-i", "/nonexistent/export.json")
        assert result.returncode == 2
        assert result.stderr.startswith("Error: Input file not found")

    def test_malformed_document(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"version": "9.0.0", "events": []}))
        result = _run_cli("-i", str(bad))
        assert result.returncode == 2
        assert "unsupported version" in result.stderr

    def test_unknown_variable_query(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "--history", "99")
        assert result.returncode == 2
        assert "Unknown variable id: 99" in result.stderr


# ---------------------------------------------------------------------------
# Tests: Verdicts and Output
# ---------------------------------------------------------------------------


class TestVerdicts:
    """Test exit codes and verdict output."""

    def test_clean_exit_zero(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export)
        assert result.returncode == 0
        assert "CLEAN" in result.stdout

    def test_conflict_exit_one(self, conflict_export: str) -> None:
        result = _run_cli("-i", conflict_export)
        assert result.returncode == 1
        assert "[CONFLICT]" in result.stdout
        assert "after it was moved" in result.stdout

    def test_silent(self, conflict_export: str) -> None:
        result = _run_cli("-i", conflict_export, "-o", "silent")
        assert result.returncode == 1
        assert result.stdout == ""

    def test_verbose_stats(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "-o", "verbose")
        assert "=== Statistics ===" in result.stdout
        assert "[INFO]" in result.stdout

    def test_stats_flag(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "--stats")
        assert result.stdout.count("=== Statistics ===") == 1
        assert "Total Variables: 3" in result.stdout

    def test_debug_level(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "-d", "3")
        assert "[DEBUG] Processed New 1" in result.stdout


# ---------------------------------------------------------------------------
# Tests: Queries
# ---------------------------------------------------------------------------


class TestQueries:
    """Test the query flags."""

    def test_history(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "--history", "1", "-o", "silent")
        assert result.returncode == 0
        lines = result.stdout.splitlines()
        assert lines[0] == "History of x (#1):"
        assert len(lines) == 5

    def test_active(self, clean_export: str) -> None:
        result = _run_cli("-i", clean_export, "--active", "1", "--at", "3", "-o", "silent")
        lines = result.stdout.splitlines()
        assert lines[0] == "Active borrows of x (#1) at t=3: 2"
        assert lines[1] == "  r1 (#2) shared since t=2"

    def test_use_graph(self, conflict_export: str) -> None:
        result = _run_cli("-i", conflict_export, "--use-graph")
        assert result.returncode == 1
