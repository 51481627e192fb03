"""Tests for configuration loading and validation."""

import textwrap

from consensus_loop.config import (
    Config,
    ReviewerSettings,
    load_config,
    validate_config,
)


def _write(tmp_path, text):
    path = tmp_path / "consensus.yaml"
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for reading YAML configuration."""

    def test_load_full_config(self, tmp_path):
        path = _write(
            tmp_path,
            """
            reviewers:
              - name: security
                url: http://localhost:8001/review
                timeout_seconds: 60
              - name: style
                url: http://localhost:8002/review
            scheduler:
              max_rounds: 3
              reviewer_timeout_seconds: 120
            synthesizer:
              similarity_threshold: 0.9
            storage:
              state_dir: state
            escalation:
              interactive: false
            """,
        )

        config = load_config(path)

        assert [r.name for r in config.reviewers] == ["security", "style"]
        assert config.reviewers[0].timeout_seconds == 60
        assert config.reviewers[1].timeout_seconds is None
        assert config.scheduler.max_rounds == 3
        assert config.scheduler.reviewer_timeout_seconds == 120
        assert config.synthesizer.similarity_threshold == 0.9
        assert config.storage.state_dir == "state"
        assert config.escalation.interactive is False

    def test_defaults_for_missing_sections(self, tmp_path):
        config = load_config(_write(tmp_path, "reviewers: []\n"))

        assert config.scheduler.max_rounds == 5
        assert config.synthesizer.similarity_threshold == 0.85
        assert config.storage.state_dir == ".consensus"
        assert config.escalation.interactive is True

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config == Config()

    def test_env_vars_are_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REVIEW_TOKEN", "secret")
        path = _write(
            tmp_path,
            """
            reviewers:
              - name: security
                url: http://localhost:8001/review
                headers:
                  Authorization: ${REVIEW_TOKEN}
            """,
        )

        config = load_config(path)

        assert config.reviewers[0].headers == {"Authorization": "secret"}

    def test_unset_env_var_expands_to_empty(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CONSENSUS_UNSET_URL", raising=False)
        path = _write(
            tmp_path,
            """
            reviewers:
              - name: security
                url: ${CONSENSUS_UNSET_URL}
            """,
        )

        config = load_config(path)

        assert config.reviewers[0].url == ""
        assert "Reviewer security has no url" in validate_config(config)


class TestValidateConfig:
    """Tests for configuration validation."""

    def _valid(self) -> Config:
        return Config(reviewers=[ReviewerSettings(name="security", url="http://localhost:8001")])

    def test_valid_config(self):
        assert validate_config(self._valid()) == []

    def test_no_reviewers(self):
        assert "No reviewers configured" in validate_config(Config())

    def test_duplicate_reviewer_names(self):
        config = self._valid()
        config.reviewers.append(ReviewerSettings(name="security", url="http://localhost:8002"))

        assert "Duplicate reviewer names: security" in validate_config(config)

    def test_max_rounds_below_one(self):
        config = self._valid()
        config.scheduler.max_rounds = 0

        assert "max_rounds must be at least 1, got 0" in validate_config(config)

    def test_threshold_out_of_range(self):
        config = self._valid()
        config.synthesizer.similarity_threshold = 1.5

        errors = validate_config(config)

        assert len(errors) == 1
        assert errors[0].startswith("similarity_threshold")

    def test_non_positive_timeout(self):
        config = self._valid()
        config.reviewers[0].timeout_seconds = 0

        assert "Reviewer security timeout_seconds must be positive" in validate_config(config)
