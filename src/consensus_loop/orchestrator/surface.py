"""Escalation surface: the single end-of-run batch for the decision-maker."""

import logging

from consensus_loop.models.escalation import EscalationReason, PendingItem
from consensus_loop.models.findings import Finding
from consensus_loop.orchestrator.synthesizer import FindingMatcher
from consensus_loop.storage.store import PendingEscalation, RegistryEntry

logger = logging.getLogger(__name__)

_NOTES = {
    EscalationReason.NO_FIX: "no mechanical fix was proposed",
    EscalationReason.MUTATION_FAILED: "automatic application failed",
    EscalationReason.NO_CONSENSUS: "never achieved consensus",
    EscalationReason.UNVERIFIED: "unverified: the round limit was reached before another review",
}


class EscalationSurface:
    """Collects every unresolved finding into one deduplicated batch."""

    def __init__(self, matcher: FindingMatcher | None = None) -> None:
        self.matcher = matcher or FindingMatcher()

    def build_batch(
        self,
        pending: list[PendingEscalation],
        survivors: list[RegistryEntry],
    ) -> list[PendingItem]:
        """Merge routed escalations and registry survivors into pending items.

        Matching findings fold into one item that carries every round, reviewer
        and reason it was seen with. The item's finding is the most recent
        sighting, since its fix was written against the latest artifact state.

        Args:
            pending: Escalations recorded during the run, in order
            survivors: Registry entries never promoted

        Returns:
            Pending items in first-seen order, with batch-unique ids
        """
        items: list[PendingItem] = []

        for escalation in pending:
            self._add(
                items,
                escalation.finding,
                escalation.reason,
                escalation.round,
                sources=escalation.sources or [escalation.finding.source],
                already_applied=escalation.applied,
            )

        for entry in survivors:
            self._add(
                items,
                entry.finding,
                EscalationReason.NO_CONSENSUS,
                entry.round_deferred,
                sources=[entry.finding.source],
            )

        for index, item in enumerate(items, start=1):
            item.id = f"esc-{index:03d}"
            item.note = "; ".join(_NOTES[reason] for reason in item.reasons)

        logger.info(
            f"Escalation batch: {len(items)} items from {len(pending)} routed findings "
            f"and {len(survivors)} registry survivors"
        )
        return items

    def _add(
        self,
        items: list[PendingItem],
        finding: Finding,
        reason: EscalationReason,
        round_number: int,
        sources: list[str],
        already_applied: bool = False,
    ) -> None:
        for item in items:
            if self.matcher.are_similar(item.finding, finding):
                if reason not in item.reasons:
                    item.reasons.append(reason)
                if round_number not in item.rounds:
                    item.rounds.append(round_number)
                    item.rounds.sort()
                for source in sources:
                    if source not in item.sources:
                        item.sources.append(source)
                if finding.round > item.finding.round or (
                    finding.round == item.finding.round and finding.has_fix and not item.finding.has_fix
                ):
                    item.finding = finding
                item.already_applied = item.already_applied or already_applied
                return

        items.append(
            PendingItem(
                finding=finding,
                reasons=[reason],
                rounds=[round_number],
                sources=list(dict.fromkeys(sources)),
                already_applied=already_applied,
            )
        )
