"""Escalation decision interface."""

from typing import Protocol, runtime_checkable

from consensus_loop.models.escalation import Decision, DecisionChoice, PendingItem


@runtime_checkable
class Escalator(Protocol):
    """Makes the final apply/skip call for each pending item, in one batch."""

    async def decide(self, items: list[PendingItem]) -> list[Decision]:
        ...


class SkipAllEscalator:
    """Non-interactive decision-maker that leaves every item unapplied."""

    async def decide(self, items: list[PendingItem]) -> list[Decision]:
        return [Decision(item_id=item.id, choice=DecisionChoice.SKIP) for item in items]
