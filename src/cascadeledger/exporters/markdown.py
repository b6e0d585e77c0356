"""
Markdown report exporter.

Renders a ValidationReport as Markdown, suitable for GitHub, Notion, or any
Markdown viewer.
"""

from __future__ import annotations

from cascadeledger.models.report import (
    DiscrepancySeverity,
    IssueLevel,
    ValidationReport,
    ValidationStatus,
)

_STATUS_EMOJI = {
    ValidationStatus.PASS: "✅",
    ValidationStatus.WARNING: "🟡",
    ValidationStatus.CRITICAL: "🔴",
}

_SEVERITY_EMOJI = {
    DiscrepancySeverity.CRITICAL: "🔴",
    DiscrepancySeverity.HIGH: "🟠",
    DiscrepancySeverity.MEDIUM: "🟡",
    DiscrepancySeverity.NONE: "🟢",
}


def _rows(rows: list[int], limit: int = 12) -> str:
    if not rows:
        return "-"
    shown = ", ".join(str(r) for r in rows[:limit])
    return shown + (f" (+{len(rows) - limit} more)" if len(rows) > limit else "")


def render_markdown(report: ValidationReport) -> str:
    """Render a ValidationReport as Markdown."""
    lines: list[str] = []
    status = report.status

    # Header
    title = f" — {report.account_name}" if report.account_name else ""
    lines.append(f"# Ledger Validation Report{title}")
    lines.append("")
    lines.append(f"*Generated: {report.generated_at.strftime('%Y-%m-%d %H:%M UTC')}*")
    lines.append("")
    lines.append(f"**Status:** {_STATUS_EMOJI[status]} {status.value.upper()}")
    lines.append("")

    # Summary
    coverage = report.coverage
    lines.append("## 📊 Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| **Source Rows** | {coverage.total_rows} |")
    lines.append(f"| **Excluded Rows** | {len(coverage.excluded_rows)} |")
    lines.append(f"| **Coverage** | {coverage.coverage_percentage:.1%} |")
    lines.append(f"| **Transactions** | {report.transaction_count} |")
    lines.append(f"| **Balanced** | {report.balanced_count}/{report.transaction_count} |")
    lines.append(f"| **Settlement Groups** | {report.settlement_groups} |")
    lines.append(f"| **Orphaned Settlements** | {report.orphaned_settlements} |")
    lines.append(f"| **Critical Issues** | {len(report.critical_issues)} |")
    lines.append(f"| **Warnings** | {len(report.warnings)} |")
    lines.append("")

    if not coverage.claims_complete:
        lines.append("> Categorization did not finish; coverage gaps are not reported.")
        lines.append("")

    # Issues
    if report.issues:
        lines.append("## 🔍 Issues")
        lines.append("")
        for level in (IssueLevel.CRITICAL, IssueLevel.WARNING):
            issues = [i for i in report.issues if i.level == level]
            if not issues:
                continue
            lines.append(f"### {'🔴' if level == IssueLevel.CRITICAL else '🟡'} {level.value.title()} ({len(issues)})")
            lines.append("")
            lines.append("| Code | Rows | Detail |")
            lines.append("|------|------|--------|")
            for issue in issues:
                message = issue.message.replace("|", "\\|")
                lines.append(f"| `{issue.code}` | {_rows(issue.rows)} | {message} |")
            lines.append("")

    # Reconciliation
    result = report.reconciliation
    if result is not None:
        lines.append("## ⚖️ Balance Reconciliation")
        lines.append("")
        lines.append(f"**State:** {result.state.value} after {result.iterations} iteration(s)")
        if result.unavailable_reason:
            lines.append("")
            lines.append(f"*Unavailable: {result.unavailable_reason}*")
        lines.append("")
        if result.checkpoints:
            lines.append(
                f"Largest discrepancy: ${result.initial_max_discrepancy:,.2f} before repair, "
                f"${result.final_max_discrepancy:,.2f} after."
            )
            lines.append("")

        if result.corrections:
            lines.append("### Applied Corrections")
            lines.append("")
            lines.append("| Iteration | Correction | Confidence |")
            lines.append("|-----------|------------|------------|")
            for c in result.corrections:
                lines.append(f"| {c.iteration} | {c.description} | {c.confidence:.0%} |")
            lines.append("")

        if result.discrepancies:
            lines.append("### Remaining Discrepancies")
            lines.append("")
            lines.append("| Row | Date | Computed | Reported | Difference | Severity |")
            lines.append("|-----|------|----------|----------|------------|----------|")
            for cp in result.discrepancies[:25]:
                emoji = _SEVERITY_EMOJI[cp.severity]
                lines.append(
                    f"| {cp.row_number} | {cp.date or ''} | {cp.computed.amount:,.2f} | "
                    f"{cp.reported.amount:,.2f} | {cp.discrepancy.amount:,.2f} | {emoji} {cp.severity.value} |"
                )
            lines.append("")

    # Footer
    lines.append("---")
    lines.append("*Report generated by cascadeledger*")

    return "\n".join(lines)
