"""Configuration loading and validation for Consensus Loop."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ReviewerSettings:
    """Configuration for a single remote reviewer."""

    name: str
    url: str
    timeout_seconds: float | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class SchedulerSettings:
    """Round scheduler configuration."""

    max_rounds: int = 5
    reviewer_timeout_seconds: float = 300


@dataclass
class SynthesizerSettings:
    """Finding synthesizer configuration."""

    similarity_threshold: float = 0.85


@dataclass
class StorageSettings:
    """Durable state configuration."""

    state_dir: str = ".consensus"


@dataclass
class EscalationSettings:
    """End-of-run escalation configuration."""

    interactive: bool = True


@dataclass
class Config:
    """Complete application configuration."""

    reviewers: list[ReviewerSettings] = field(default_factory=list)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    synthesizer: SynthesizerSettings = field(default_factory=SynthesizerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file (default: consensus.yaml)

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = Path("consensus.yaml")
        if not config_path.exists():
            config_path = Path("consensus.example.yaml")

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}

    raw_config = _expand_env_vars(raw_config)

    return _parse_config(raw_config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in config."""
    if isinstance(obj, str):
        if obj.startswith("${") and obj.endswith("}"):
            env_var = obj[2:-1]
            return os.environ.get(env_var, "")
        return obj
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw config dict into Config object."""
    reviewers = []
    for reviewer_raw in raw.get("reviewers", []) or []:
        timeout = reviewer_raw.get("timeout_seconds")
        reviewers.append(
            ReviewerSettings(
                name=str(reviewer_raw.get("name", "")),
                url=str(reviewer_raw.get("url", "")),
                timeout_seconds=float(timeout) if timeout is not None else None,
                headers={str(k): str(v) for k, v in (reviewer_raw.get("headers") or {}).items()},
            )
        )

    sched_raw = raw.get("scheduler", {}) or {}
    scheduler = SchedulerSettings(
        max_rounds=int(sched_raw.get("max_rounds", 5)),
        reviewer_timeout_seconds=float(sched_raw.get("reviewer_timeout_seconds", 300)),
    )

    synth_raw = raw.get("synthesizer", {}) or {}
    synthesizer = SynthesizerSettings(
        similarity_threshold=float(synth_raw.get("similarity_threshold", 0.85)),
    )

    storage_raw = raw.get("storage", {}) or {}
    storage = StorageSettings(
        state_dir=str(storage_raw.get("state_dir", ".consensus")),
    )

    escalation_raw = raw.get("escalation", {}) or {}
    escalation = EscalationSettings(
        interactive=bool(escalation_raw.get("interactive", True)),
    )

    return Config(
        reviewers=reviewers,
        scheduler=scheduler,
        synthesizer=synthesizer,
        storage=storage,
        escalation=escalation,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of errors.

    Args:
        config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.reviewers:
        errors.append("No reviewers configured")

    names = [r.name for r in config.reviewers]
    duplicates = sorted({n for n in names if n and names.count(n) > 1})
    if duplicates:
        errors.append(f"Duplicate reviewer names: {', '.join(duplicates)}")

    for index, reviewer in enumerate(config.reviewers):
        label = reviewer.name or f"#{index + 1}"
        if not reviewer.name:
            errors.append(f"Reviewer {label} has no name")
        if not reviewer.url:
            errors.append(f"Reviewer {label} has no url")
        if reviewer.timeout_seconds is not None and reviewer.timeout_seconds <= 0:
            errors.append(f"Reviewer {label} timeout_seconds must be positive")

    if config.scheduler.max_rounds < 1:
        errors.append(f"max_rounds must be at least 1, got {config.scheduler.max_rounds}")

    if config.scheduler.reviewer_timeout_seconds <= 0:
        errors.append("reviewer_timeout_seconds must be positive")

    if not 0.0 < config.synthesizer.similarity_threshold <= 1.0:
        errors.append(
            f"similarity_threshold must be in (0, 1], got {config.synthesizer.similarity_threshold}"
        )

    return errors
