"""Finding models for review rounds."""

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(Enum):
    """Severity levels for findings, ordered from least to most severe.

    - LOW: Cosmetic or polish; acted on only with consensus.
    - MEDIUM: Worth fixing; acted on only with consensus.
    - HIGH: Defect; auto-applied on severity alone.
    - CRITICAL: Serious defect; auto-applied on severity alone.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the severity ordering (LOW == 0)."""
        return list(Severity).index(self)

    @property
    def is_high_stakes(self) -> bool:
        """HIGH and CRITICAL findings force another round."""
        return self in (Severity.HIGH, Severity.CRITICAL)


class Action(Enum):
    """Outcome of the policy engine for one finding."""

    AUTO_APPLY = "auto_apply"
    DEFER = "defer"
    ESCALATE = "escalate"


class ApplyTrigger(Enum):
    """Which policy rule caused a finding to auto-apply."""

    SEVERITY = "severity"
    SAME_ROUND = "same_round"
    CROSS_ROUND = "cross_round"


@dataclass(frozen=True)
class Finding:
    """A single reviewer's observation about the artifact.

    Findings are immutable; a correction is a new Finding in a later round.
    """

    id: str
    round: int
    source: str
    severity: Severity
    location: str
    summary: str
    fix: Any = None
    auto_fixable: bool = False

    @property
    def has_fix(self) -> bool:
        """Whether the reviewer proposed a mechanical fix."""
        return self.fix is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self.id,
            "round": self.round,
            "source": self.source,
            "severity": self.severity.value,
            "location": self.location,
            "summary": self.summary,
            "fix": self.fix,
            "auto_fixable": self.auto_fixable,
        }

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        round_number: int | None = None,
        source: str | None = None,
    ) -> "Finding":
        """Build a Finding from a raw mapping.

        ``round_number`` and ``source`` fill in fields the raw mapping leaves out,
        which is how reviewer output gets stamped by the pool.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        round_value = raw.get("round", round_number)
        source_value = raw.get("source", source)
        if round_value is None:
            raise KeyError("round")
        if not source_value:
            raise KeyError("source")

        severity = Severity(str(raw["severity"]).lower())
        location = str(raw["location"])
        summary = str(raw["summary"])
        finding_id = raw.get("id") or _derive_id(int(round_value), source_value, location, summary)

        finding = cls(
            id=str(finding_id),
            round=int(round_value),
            source=str(source_value),
            severity=severity,
            location=location,
            summary=summary,
            fix=raw.get("fix"),
            auto_fixable=bool(raw.get("auto_fixable", False)),
        )
        problems = finding_problems(finding)
        if problems:
            raise ValueError("; ".join(problems))
        return finding


def _derive_id(round_number: int, source: str, location: str, summary: str) -> str:
    digest = hashlib.md5(f"{round_number}:{source}:{location}:{summary}".encode()).hexdigest()
    return f"finding-{digest[:10]}"


def finding_problems(finding: Any) -> list[str]:
    """List the reasons a finding cannot be classified (empty if it is valid).

    Works on anything finding-shaped so that a bad object from a reviewer
    is reported instead of raising inside synthesis.
    """
    problems = []
    for name in ("id", "source", "location", "summary"):
        value = getattr(finding, name, None)
        if not isinstance(value, str) or not value.strip():
            problems.append(f"missing {name}")

    if not isinstance(getattr(finding, "severity", None), Severity):
        problems.append(f"invalid severity {getattr(finding, 'severity', None)!r}")

    round_number = getattr(finding, "round", None)
    if not isinstance(round_number, int) or isinstance(round_number, bool) or round_number < 1:
        problems.append(f"invalid round {round_number!r}")

    return problems
