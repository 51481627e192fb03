"""Report rendering for the console, JSON and Markdown."""

from typing import Any

from rich.console import Console
from rich.table import Table

from consensus_loop.models.escalation import RunReport
from consensus_loop.models.findings import ApplyTrigger, Severity
from consensus_loop.models.rounds import RoundOutcome, RunStatus

STATUS_LABELS = {
    RunStatus.RUNNING: "🔄 Running",
    RunStatus.CONVERGED: "✅ Converged",
    RunStatus.FORCED_HALT: "⚠️ Forced halt",
}


def format_report_as_json(report: RunReport) -> dict[str, Any]:
    """Convert a run report to a JSON-serializable dict."""
    return {
        "run_id": report.run_id,
        "status": report.status.value,
        "rounds_run": report.rounds_run,
        "total_applied": report.total_applied,
        "rounds": [outcome.to_dict() for outcome in report.rounds],
        "escalations": [
            {
                "id": result.item.id,
                "finding": result.item.finding.to_dict(),
                "reasons": [reason.value for reason in result.item.reasons],
                "rounds": result.item.rounds,
                "sources": result.item.sources,
                "note": result.item.note,
                "decision": result.choice.value,
                "applied": result.applied,
                "detail": result.detail,
            }
            for result in report.escalations
        ],
    }


class ReportFormatter:
    """Renders run reports."""

    def format_markdown(self, report: RunReport) -> str:
        """Format a run report as Markdown."""
        lines = [
            f"# Consensus run {report.run_id}",
            "",
            f"**Status:** {STATUS_LABELS[report.status]} after {report.rounds_run} rounds "
            f"| **Fixes applied:** {report.total_applied}",
            "",
            "## Rounds",
            "",
            "| Round | Findings | Applied (sev/same/cross) | Deferred | Escalated | Decision |",
            "|---|---|---|---|---|---|",
        ]
        for outcome in report.rounds:
            lines.append(
                f"| {outcome.round_number} | {self._severity_breakdown(outcome)} "
                f"| {self._trigger_breakdown(outcome)} | {outcome.deferred} "
                f"| {outcome.escalated} | {outcome.decision.value if outcome.decision else '-'} |"
            )

        if report.failed_reviewers:
            lines += ["", "## Reviewer failures", ""]
            lines += [f"- {failure}" for failure in report.failed_reviewers]

        if report.escalations:
            lines += ["", "## Escalated findings", ""]
            for result in report.escalations:
                finding = result.item.finding
                lines.append(
                    f"- **[{finding.severity.value}]** `{finding.location}`: {finding.summary} "
                    f"(rounds {', '.join(str(r) for r in result.item.rounds)}; "
                    f"reviewers {', '.join(result.item.sources)}; {result.item.note}) "
                    f"→ {result.choice.value}, {result.detail}"
                )
        else:
            lines += ["", "No findings required escalation."]

        return "\n".join(lines) + "\n"

    def print_report(self, console: Console, report: RunReport) -> None:
        """Print a run report as rich tables."""
        console.print(
            f"\n[bold]{STATUS_LABELS[report.status]}[/bold] after {report.rounds_run} rounds, "
            f"{report.total_applied} fixes applied"
        )
        console.print(self.rounds_table(report.rounds))

        if report.failed_reviewers:
            console.print(f"[yellow]⚠️  Reviewer failures: {', '.join(report.failed_reviewers)}[/yellow]")

        if report.escalations:
            table = Table(title="Escalated findings")
            table.add_column("Severity")
            table.add_column("Location")
            table.add_column("Summary")
            table.add_column("Why")
            table.add_column("Decision")
            for result in report.escalations:
                finding = result.item.finding
                table.add_row(
                    finding.severity.value,
                    finding.location,
                    finding.summary,
                    result.item.note,
                    f"{result.choice.value} ({result.detail})",
                )
            console.print(table)

    def rounds_table(self, rounds: list[RoundOutcome]) -> Table:
        """Build a table of round outcomes."""
        table = Table(title="Rounds")
        table.add_column("Round", justify="right")
        table.add_column("Findings")
        table.add_column("Applied (sev/same/cross)")
        table.add_column("Deferred", justify="right")
        table.add_column("Escalated", justify="right")
        table.add_column("Decision")
        for outcome in rounds:
            table.add_row(
                str(outcome.round_number),
                self._severity_breakdown(outcome),
                self._trigger_breakdown(outcome),
                str(outcome.deferred),
                str(outcome.escalated),
                outcome.decision.value if outcome.decision else "-",
            )
        return table

    def _severity_breakdown(self, outcome: RoundOutcome) -> str:
        if outcome.total_findings == 0:
            return "none"
        parts = [
            f"{outcome.findings_by_severity[severity]} {severity.value}"
            for severity in reversed(list(Severity))
            if outcome.findings_by_severity[severity]
        ]
        return ", ".join(parts)

    def _trigger_breakdown(self, outcome: RoundOutcome) -> str:
        return "/".join(str(outcome.applied_by_trigger[trigger]) for trigger in ApplyTrigger)
