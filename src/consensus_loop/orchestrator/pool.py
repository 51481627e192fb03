"""Reviewer pool for parallel review fan-out."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from consensus_loop.models.findings import Finding
from consensus_loop.reviewers.base import Reviewer

logger = logging.getLogger(__name__)


class ReviewerOutputError(Exception):
    """Raised when a reviewer returns something other than a list of findings."""

    pass


@dataclass
class PoolConfig:
    """Configuration for the reviewer pool."""

    timeout_seconds: float = 300
    reviewer_timeouts: dict[str, float] = field(default_factory=dict)


@dataclass
class ReviewerResult:
    """What one reviewer contributed to a round."""

    reviewer: str
    findings: list[Any] = field(default_factory=list)
    error: str | None = None
    dropped: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None


def reviewer_name(reviewer: Reviewer) -> str:
    """Identifier used as the ``source`` of a reviewer's findings."""
    return getattr(reviewer, "name", None) or type(reviewer).__name__


class ReviewerPool:
    """Runs every reviewer against the same snapshot in parallel and joins."""

    def __init__(
        self,
        reviewers: list[Reviewer],
        timeout_seconds: float = 300,
        config: PoolConfig | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            reviewers: Independent reviewers to fan out to
            timeout_seconds: Maximum time to wait for each reviewer
            config: Optional full configuration (overrides other params)
        """
        self.reviewers = reviewers
        self.config = config or PoolConfig(timeout_seconds=timeout_seconds)

        names = [reviewer_name(r) for r in reviewers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Reviewer names must be unique: {', '.join(duplicates)}")

    async def dispatch(self, snapshot: Any, round_number: int) -> list[ReviewerResult]:
        """Execute all reviewers in parallel and collect results.

        Returns only after every reviewer has returned, failed or timed out.
        A failed reviewer contributes zero findings.

        Args:
            snapshot: Immutable artifact snapshot shared by all reviewers
            round_number: Round being dispatched

        Returns:
            One result per reviewer, in reviewer order
        """
        logger.info(f"Round {round_number}: dispatching {len(self.reviewers)} reviewers")

        tasks = [
            asyncio.create_task(
                self._run_reviewer_with_timeout(reviewer, snapshot),
                name=f"reviewer-{reviewer_name(reviewer)}",
            )
            for reviewer in self.reviewers
        ]

        results = await asyncio.gather(*tasks, return_exceptions=True)

        collected: list[ReviewerResult] = []
        for reviewer, result in zip(self.reviewers, results):
            name = reviewer_name(reviewer)
            if isinstance(result, asyncio.TimeoutError):
                logger.warning(f"Reviewer {name} timed out in round {round_number}")
                collected.append(ReviewerResult(reviewer=name, error="timeout"))
            elif isinstance(result, Exception):
                logger.warning(f"Reviewer {name} failed in round {round_number}: {result}")
                collected.append(ReviewerResult(reviewer=name, error=type(result).__name__))
            elif isinstance(result, BaseException):
                raise result
            else:
                try:
                    findings, dropped = self._coerce_findings(name, result, round_number)
                except ReviewerOutputError as e:
                    logger.warning(f"Reviewer {name} returned malformed output: {e}")
                    collected.append(ReviewerResult(reviewer=name, error="malformed output"))
                    continue
                logger.info(f"Reviewer {name} completed: {len(findings)} findings")
                collected.append(ReviewerResult(reviewer=name, findings=findings, dropped=dropped))

        failed = [r.reviewer for r in collected if r.failed]
        logger.info(
            f"Round {round_number} fan-out complete: {len(collected) - len(failed)} succeeded, "
            f"{len(failed)} failed"
        )
        return collected

    async def _run_reviewer_with_timeout(self, reviewer: Reviewer, snapshot: Any) -> Any:
        """Run a single reviewer with its timeout.

        Raises:
            asyncio.TimeoutError: If the reviewer exceeds its timeout
        """
        timeout = self.config.reviewer_timeouts.get(
            reviewer_name(reviewer), self.config.timeout_seconds
        )
        return await asyncio.wait_for(reviewer.review(snapshot), timeout=timeout)

    def _coerce_findings(
        self, name: str, raw: Any, round_number: int
    ) -> tuple[list[Any], int]:
        """Turn reviewer output into findings stamped with round and source."""
        if not isinstance(raw, (list, tuple)):
            raise ReviewerOutputError(f"expected a list, got {type(raw).__name__}")

        findings: list[Any] = []
        dropped = 0
        for item in raw:
            if isinstance(item, Mapping):
                try:
                    findings.append(Finding.from_dict(item, round_number=round_number, source=name))
                except (KeyError, ValueError, TypeError) as e:
                    dropped += 1
                    logger.warning(f"Failed to parse finding from {name}: {e}, raw: {item}")
            else:
                # Finding objects pass through; the synthesizer validates them
                findings.append(item)
        return findings, dropped
