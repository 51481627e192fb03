"""Finding synthesizer: dedup, consensus counting and classification for a round."""

import hashlib
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any

from consensus_loop import policy
from consensus_loop.models.escalation import EscalationReason
from consensus_loop.models.findings import (
    Action,
    ApplyTrigger,
    Finding,
    Severity,
    finding_problems,
)
from consensus_loop.storage.store import ConsensusStore, RegistryEntry

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


@dataclass
class SynthesizerConfig:
    """Configuration for the synthesizer."""

    similarity_threshold: float = 0.85


class FindingMatcher:
    """Deterministic similarity test shared by same-round and cross-round matching.

    Two findings match when their normalized locations are equal and their
    normalized summaries are at least ``threshold`` similar.
    """

    def __init__(self, threshold: float = 0.85) -> None:
        self.threshold = threshold

    @staticmethod
    def location_key(location: str) -> str:
        """Normalize a location for equality comparison."""
        normalized = location.replace("\\", "/").strip().lower()
        return _WHITESPACE.sub(" ", normalized)

    @staticmethod
    def summary_key(summary: str) -> str:
        """Normalize a summary for similarity comparison."""
        normalized = _PUNCTUATION.sub(" ", summary.lower())
        return _WHITESPACE.sub(" ", normalized).strip()

    def key(self, finding: Finding) -> str:
        """Similarity key used as the registry row key."""
        return f"{self.location_key(finding.location)}|{self.summary_key(finding.summary)}"

    def summary_similarity(self, s1: str, s2: str) -> float:
        """Compute summary similarity using SequenceMatcher."""
        return SequenceMatcher(None, self.summary_key(s1), self.summary_key(s2)).ratio()

    def are_similar(self, f1: Finding, f2: Finding) -> bool:
        """Check if two findings describe the same issue."""
        if self.location_key(f1.location) != self.location_key(f2.location):
            return False
        return self.summary_similarity(f1.summary, f2.summary) >= self.threshold


@dataclass
class SynthesizedFinding:
    """A representative finding for one same-round group, with its classification."""

    finding: Finding
    key: str
    members: list[Finding]
    sources: list[str]
    action: Action
    trigger: ApplyTrigger | None = None
    registry_entry: RegistryEntry | None = None

    @property
    def same_round_matches(self) -> int:
        """Other reviewers that independently raised this finding."""
        return len(self.sources) - 1

    @property
    def registry_match(self) -> bool:
        """Whether this finding promotes an entry deferred in an earlier round."""
        return self.registry_entry is not None

    @property
    def all_sources(self) -> list[str]:
        """Reviewers that raised it, including the one behind a promoted deferral."""
        sources = list(self.sources)
        if self.registry_entry is not None and self.registry_entry.finding.source not in sources:
            sources.append(self.registry_entry.finding.source)
        return sources


@dataclass
class SynthesisResult:
    """Partitioned output of one round's synthesis."""

    round_number: int
    to_apply: list[SynthesizedFinding] = field(default_factory=list)
    to_defer: list[SynthesizedFinding] = field(default_factory=list)
    to_escalate: list[SynthesizedFinding] = field(default_factory=list)
    promoted: list[RegistryEntry] = field(default_factory=list)
    dropped: int = 0

    @property
    def findings(self) -> list[SynthesizedFinding]:
        """Every representative finding of the round, whatever its action."""
        return self.to_apply + self.to_defer + self.to_escalate

    @property
    def findings_by_severity(self) -> dict[Severity, int]:
        """Count representative findings by severity level."""
        counts: dict[Severity, int] = dict.fromkeys(Severity, 0)
        for item in self.findings:
            counts[item.finding.severity] += 1
        return counts


class FindingSynthesizer:
    """Turns one round's raw findings into apply/defer/escalate lists."""

    def __init__(self, registry: ConsensusStore, config: SynthesizerConfig | None = None) -> None:
        """Initialize the synthesizer.

        Args:
            registry: Store holding the consensus registry
            config: Optional configuration
        """
        self.registry = registry
        self.config = config or SynthesizerConfig()
        self.matcher = FindingMatcher(self.config.similarity_threshold)

    def synthesize(self, findings: Iterable[Any], round_number: int) -> SynthesisResult:
        """Deduplicate, classify and persist one round's findings.

        Algorithm:
        1. Drop malformed findings with a warning
        2. Cluster matching findings within the round
        3. Fold each cluster into one representative finding
        4. Look each representative up in the consensus registry
        5. Classify with the policy engine and partition
        6. Persist deferrals, promotions and escalations

        Args:
            findings: Every finding returned by the round's reviewers
            round_number: The round being synthesized

        Returns:
            Partitioned synthesis result
        """
        valid, dropped = self._validate(findings)
        result = SynthesisResult(round_number=round_number, dropped=dropped)

        clusters = self._cluster_findings(valid)
        claimed: set[int] = set()

        for cluster in clusters:
            representative = self._merge_cluster(cluster, round_number)
            sources = sorted({f.source for f in cluster})
            entry = self._match_registry(representative, claimed)

            decision = policy.evaluate(representative, len(sources) - 1, entry is not None)
            item = SynthesizedFinding(
                finding=representative,
                key=self.matcher.key(representative),
                members=cluster,
                sources=sources,
                action=decision.action,
                trigger=decision.trigger,
            )

            if decision.action is Action.AUTO_APPLY:
                if entry is not None and entry.entry_id is not None:
                    item.registry_entry = entry
                    claimed.add(entry.entry_id)
                    result.promoted.append(entry)
                result.to_apply.append(item)
            elif decision.action is Action.DEFER:
                result.to_defer.append(item)
            else:
                result.to_escalate.append(item)

        self._persist(result)

        logger.info(
            f"Round {round_number} synthesis: {len(result.findings)} findings "
            f"({len(result.to_apply)} apply, {len(result.to_defer)} defer, "
            f"{len(result.to_escalate)} escalate, {len(result.promoted)} promoted, "
            f"{result.dropped} dropped)"
        )
        return result

    def _validate(self, findings: Iterable[Any]) -> tuple[list[Finding], int]:
        """Keep well-formed findings; count and log the rest."""
        valid = []
        dropped = 0
        for finding in findings:
            problems = finding_problems(finding)
            if problems:
                dropped += 1
                logger.warning(f"Dropping malformed finding {finding!r}: {', '.join(problems)}")
                continue
            valid.append(finding)
        return valid, dropped

    def _cluster_findings(self, findings: list[Finding]) -> list[list[Finding]]:
        """Cluster matching findings together, independent of input order."""
        ordered = sorted(
            findings,
            key=lambda f: (
                f.source,
                self.matcher.location_key(f.location),
                self.matcher.summary_key(f.summary),
                f.id,
            ),
        )

        clusters: list[list[Finding]] = []
        used = set()

        for i, finding_i in enumerate(ordered):
            if i in used:
                continue

            cluster = [finding_i]
            used.add(i)

            for j in range(i + 1, len(ordered)):
                if j in used:
                    continue
                if self.matcher.are_similar(finding_i, ordered[j]):
                    cluster.append(ordered[j])
                    used.add(j)

            clusters.append(cluster)

        return clusters

    def _merge_cluster(self, cluster: list[Finding], round_number: int) -> Finding:
        """Fold a cluster into one representative finding."""
        if len(cluster) == 1:
            return cluster[0]

        # Most detailed summary
        detailed = max(cluster, key=lambda f: len(f.summary))

        # Prefer a fix the reviewer marked unambiguous, then the most detailed one
        with_fix = [f for f in cluster if f.has_fix]
        fix_source = (
            sorted(with_fix, key=lambda f: (not f.auto_fixable, -len(f.summary)))[0]
            if with_fix
            else detailed
        )

        # Use most severe rating
        severity = max((f.severity for f in cluster), key=lambda s: s.rank)

        key = self.matcher.key(detailed)
        digest = hashlib.md5(f"{round_number}:{key}".encode()).hexdigest()

        return Finding(
            id=f"finding-{digest[:10]}",
            round=round_number,
            source=fix_source.source,
            severity=severity,
            location=detailed.location,
            summary=detailed.summary,
            fix=fix_source.fix,
            auto_fixable=fix_source.auto_fixable,
        )

    def _match_registry(self, finding: Finding, claimed: set[int]) -> RegistryEntry | None:
        """Find the oldest unclaimed registry entry matching a finding."""
        location_key = self.matcher.location_key(finding.location)
        for entry in self.registry.entries_for_location(location_key):
            if entry.entry_id in claimed:
                continue
            if self.matcher.are_similar(finding, entry.finding):
                return entry
        return None

    def _persist(self, result: SynthesisResult) -> None:
        """Write promotions, deferrals and escalations to the store."""
        with self.registry.transaction():
            for entry in result.promoted:
                self.registry.remove_entry(entry.entry_id)
                logger.debug(f"Promoted registry entry {entry.key} (deferred round {entry.round_deferred})")

            for item in result.to_defer:
                self.registry.add_entry(
                    RegistryEntry(
                        key=item.key,
                        location_key=self.matcher.location_key(item.finding.location),
                        finding=item.finding,
                        round_deferred=result.round_number,
                    )
                )

            for item in result.to_escalate:
                self.registry.add_pending(
                    item.finding, EscalationReason.NO_FIX, result.round_number, sources=item.all_sources
                )
