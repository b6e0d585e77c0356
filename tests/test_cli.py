"""Tests for the cascadeledger command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

HEADER = "Run Date,Action,Symbol,Quantity,Price ($),Amount ($),Cash Balance ($)\n"
CLEAN = (
    HEADER
    + '01/02/2024,CASH CONTRIBUTION CURRENT YEAR (Cash),,,,"1,000.00","1,000.00"\n'
    + "01/03/2024,YOU BOUGHT APPLE INC (AAPL) (Cash),AAPL,2,150.00,-300.00,700.00\n"
)


def _args(tmp_path: Path, csv_text: str, *extra: str) -> list[str]:
    path = tmp_path / "history.csv"
    path.write_text(csv_text)
    return [
        "check",
        "--csv", str(path),
        "--institution", "fidelity",
        "--config", str(tmp_path / "missing.yaml"),
        "--local",
        *extra,
    ]


class TestCLI:
    def test_version(self) -> None:
        from typer.testing import CliRunner

        from cascadeledger import __version__
        from cascadeledger.cli import app

        result = CliRunner().invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_patterns_command(self) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        result = CliRunner().invoke(app, ["patterns"])

        assert result.exit_code == 0
        assert "Institutions" in result.stdout
        assert "fidelity" in result.stdout

    def test_check_help(self) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        result = CliRunner().invoke(app, ["check", "--help"])
        assert result.exit_code == 0
        assert "--csv" in result.stdout

    def test_check_clean_export(self, tmp_path: Path) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        output = tmp_path / "report.json"
        result = CliRunner().invoke(app, _args(tmp_path, CLEAN, "--output", str(output)))

        assert result.exit_code == 0, result.stdout
        assert "Validation Summary" in result.stdout
        data = json.loads(output.read_text())
        assert data["status"] == "pass"
        assert data["transaction_count"] == 2

    def test_check_markdown_output(self, tmp_path: Path) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        output = tmp_path / "report.md"
        result = CliRunner().invoke(app, _args(tmp_path, CLEAN, "-o", str(output)))

        assert result.exit_code == 0
        assert output.read_text().startswith("# Ledger Validation Report")

    def test_check_critical_exit_code(self, tmp_path: Path) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        orphaned =HEADER + "01/01/2024,,,,,-25.00,975.00\n" + CLEAN[len(HEADER):]
        result = CliRunner().invoke(app, _args(tmp_path, orphaned))

        assert result.exit_code == 2

    def test_check_missing_file(self, tmp_path: Path) -> None:
        from typer.testing import CliRunner

        from cascadeledger.cli import app

        result = CliRunner().invoke(app, ["check", "--csv", str(tmp_path / "nope.csv"), "--local"])
        assert result.exit_code == 1
        assert "not found" in result.stdout
