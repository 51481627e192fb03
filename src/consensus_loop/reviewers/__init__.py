"""Reviewers for Consensus Loop."""

from consensus_loop.reviewers.base import Reviewer
from consensus_loop.reviewers.http import HttpReviewer, HttpReviewerConfig

__all__ = [
    "HttpReviewer",
    "HttpReviewerConfig",
    "Reviewer",
]
