"""Reviewer backed by a remote HTTP endpoint."""

import dataclasses
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass
class HttpReviewerConfig:
    """Configuration for a remote reviewer endpoint."""

    name: str
    url: str
    timeout_seconds: float = 300
    headers: dict[str, str] = field(default_factory=dict)


class HttpReviewer:
    """Posts the artifact snapshot to a review endpoint and returns its findings.

    The endpoint receives ``{"reviewer": <name>, "artifact": <snapshot>}`` and
    answers with ``{"findings": [...]}``, a bare JSON list, or text containing
    either (for endpoints that relay a model's reply verbatim).
    """

    def __init__(self, config: HttpReviewerConfig, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the reviewer.

        Args:
            config: Endpoint configuration
            client: Optional preconfigured client (tests pass one with a mock transport)
        """
        self.config = config
        self.name = config.name
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", **config.headers},
            timeout=config.timeout_seconds,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpReviewer":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def review(self, snapshot: Any) -> list[Any]:
        """Send one snapshot for review.

        Raises:
            httpx.HTTPError: If the request fails
            ValueError: If the response holds no findings list
        """
        body = {"reviewer": self.name, "artifact": _snapshot_payload(snapshot)}

        logger.debug(f"Requesting review from {self.name} at {self.config.url}")
        response = await self._client.post(self.config.url, json=body)
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError:
            data = self._parse_json_response(response.text)

        if isinstance(data, str):
            data = self._parse_json_response(data)

        findings = data.get("findings") if isinstance(data, dict) else data
        if not isinstance(findings, list):
            raise ValueError(f"Reviewer {self.name} returned no findings list")

        logger.debug(f"Reviewer {self.name} returned {len(findings)} findings")
        return findings

    def _parse_json_response(self, content: str) -> Any:
        """Parse JSON from response text, handling markdown code blocks."""
        content = content.strip()

        if "```json" in content:
            match = re.search(r"```json\s*([\s\S]*?)```", content)
            if match:
                content = match.group(1).strip()
        elif "```" in content:
            match = re.search(r"```\s*([\s\S]*?)```", content)
            if match:
                content = match.group(1).strip()

        if not content.startswith("["):
            json_match = re.search(r"\{[\s\S]*\}", content)
            if json_match:
                content = json_match.group(0)

        return json.loads(content)


def _snapshot_payload(snapshot: Any) -> Any:
    """Convert a snapshot into something JSON-serializable."""
    if hasattr(snapshot, "to_dict"):
        return snapshot.to_dict()
    if dataclasses.is_dataclass(snapshot) and not isinstance(snapshot, type):
        return dataclasses.asdict(snapshot)
    return snapshot
