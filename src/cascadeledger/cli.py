"""
cascadeledger CLI — command-line interface.

Usage:
    cascadeledger check --csv history.csv --institution fidelity
    cascadeledger check --csv 2023.csv --csv 2024.csv --output report.json --local
    cascadeledger patterns
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cascadeledger import __version__

app = typer.Typer(
    name="cascadeledger",
    help="Double-entry ledgers from brokerage CSV exports",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]cascadeledger[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cascadeledger — Materialize. Reconcile. Validate."""


@app.command()
def check(
    csv: List[str] = typer.Option(
        ...,
        "--csv",
        help="CSV export to check (repeat for several files, oldest first)",
    ),
    institution: Optional[str] = typer.Option(
        None,
        "--institution",
        "-i",
        help="Institution: fidelity, coinbase, schwab, generic",
    ),
    config: str = typer.Option(
        "cascadeledger.yaml",
        "--config",
        "-c",
        help="Path to config file",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the report to a file (.md, .json)",
    ),
    local: bool = typer.Option(
        False,
        "--local",
        help="Rule-based only; never send rows to an LLM",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging"),
) -> None:
    """Materialize, reconcile and validate CSV exports."""
    from cascadeledger.connectors.csv_connector import CSVConnector
    from cascadeledger.pilot import LedgerPilot

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    console.print(Panel.fit(
        "[bold blue]cascadeledger[/bold blue] — Ledger Check",
        subtitle=f"v{__version__}",
    ))

    connector = CSVConnector(file_paths=csv)
    try:
        rows = connector.load()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    config_path = config if Path(config).exists() else None
    pilot = LedgerPilot.from_config(config_path)
    categorization = pilot.config.categorization.model_copy(
        update={
            "institution": institution or pilot.config.categorization.institution,
            "local_only": local or pilot.config.categorization.local_only,
        }
    )
    if categorization != pilot.config.categorization:
        pilot = LedgerPilot(config=pilot.config.model_copy(update={"categorization": categorization}))

    if categorization.local_only:
        console.print("[dim]Running in local mode (rule-based oracle and corrector only)[/dim]")

    with console.status("[bold green]Checking ledger...[/bold green]"):
        report = pilot.run_sync(rows)

    _display_report(report)
    if output:
        _save_report(report, output)

    if report.critical_issues:
        raise typer.Exit(2)


@app.command()
def patterns() -> None:
    """List built-in settlement patterns and parse plans."""
    from cascadeledger.analyzers.settlement import available_patterns, get_pattern
    from cascadeledger.connectors.parse_plan import available_plans

    plans = set(available_plans())
    table = Table(title="Institutions")
    table.add_column("Name", style="bold cyan")
    table.add_column("Settlement Pattern")
    table.add_column("Multi-row")
    table.add_column("Parse Plan")

    for name in available_patterns():
        pattern = get_pattern(name)
        table.add_row(
            name,
            type(pattern).__name__,
            "✅" if getattr(pattern, "spans_rows", False) else "—",
            name if name in plans else "generic",
        )

    console.print(table)


def _display_report(report) -> None:  # noqa: ANN001
    """Display report summary in the terminal."""
    from cascadeledger.models.report import IssueLevel, ValidationStatus

    console.print()

    status_colors = {
        ValidationStatus.PASS: "green",
        ValidationStatus.WARNING: "yellow",
        ValidationStatus.CRITICAL: "red",
    }
    color = status_colors[report.status]

    table = Table(title="Validation Summary", show_lines=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Status", f"[{color}]{report.status.value.upper()}[/{color}]")
    table.add_row("Source Rows", str(report.coverage.total_rows))
    table.add_row("Coverage", f"{report.coverage.coverage_percentage:.1%}")
    table.add_row("Transactions", str(report.transaction_count))
    table.add_row("Balanced", f"{report.balanced_count}/{report.transaction_count}")
    if report.orphaned_settlements:
        table.add_row("Orphaned Settlements", str(report.orphaned_settlements))
    if report.reconciliation is not None:
        table.add_row("Reconciliation", report.reconciliation.state.value)

    console.print(table)
    console.print()

    if report.issues:
        console.print("[bold]Issues:[/bold]")
        for i, issue in enumerate(report.issues[:10], 1):
            level_color = "red" if issue.level == IssueLevel.CRITICAL else "yellow"
            console.print(
                f"  {i}. [{level_color}][{issue.level.value.upper()}][/{level_color}] "
                f"{issue.code}: {issue.message}"
            )
        if len(report.issues) > 10:
            console.print(f"  ... and {len(report.issues) - 10} more")
        console.print()


def _save_report(report, output: str) -> None:  # noqa: ANN001
    """Save report to file."""
    path = Path(output)
    if path.suffix == ".json":
        content = report.to_json()
    else:
        content = report.to_markdown()

    path.write_text(content)
    console.print(f"[green]✓[/green] Report saved to [bold]{path}[/bold]")


if __name__ == "__main__":
    app()
