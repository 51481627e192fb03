"""Interactive terminal decision-maker."""

import asyncio

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from consensus_loop.models.escalation import Decision, DecisionChoice, PendingItem

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}


class ConsoleEscalator:
    """Shows the escalation batch as a table and asks apply/skip per item."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    async def decide(self, items: list[PendingItem]) -> list[Decision]:
        if not items:
            return []

        self.console.print(self._table(items))
        # Prompts block on stdin; keep them off the event loop
        return await asyncio.to_thread(self._ask_all, items)

    def _ask_all(self, items: list[PendingItem]) -> list[Decision]:
        decisions = []
        for index, item in enumerate(items, start=1):
            if not item.can_apply:
                # Nothing mechanical to do; the answer is recorded as acknowledged
                question = f"[{index}] Acknowledge '{item.finding.summary}'?"
            else:
                question = f"[{index}] Apply fix for '{item.finding.summary}'?"
            answer = Confirm.ask(question, console=self.console, default=False)
            decisions.append(
                Decision(
                    item_id=item.id,
                    choice=DecisionChoice.APPLY if answer else DecisionChoice.SKIP,
                )
            )
        return decisions

    def _table(self, items: list[PendingItem]) -> Table:
        table = Table(title=f"{len(items)} findings need a decision")
        table.add_column("#", justify="right")
        table.add_column("Severity")
        table.add_column("Location")
        table.add_column("Summary")
        table.add_column("Rounds")
        table.add_column("Reviewers")
        table.add_column("Why")

        for index, item in enumerate(items, start=1):
            severity = item.finding.severity.value
            table.add_row(
                str(index),
                f"[{SEVERITY_STYLES[severity]}]{severity}[/]",
                item.finding.location,
                item.finding.summary,
                ", ".join(str(r) for r in item.rounds),
                ", ".join(item.sources),
                item.note,
            )
        return table
