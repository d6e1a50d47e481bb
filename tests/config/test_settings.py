"""Tests for application settings."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from carenet.config.settings import Settings
from carenet.shared.types import AgentStep


class TestDefaults:
    """Reference configuration values."""

    def test_store_limits(self, monkeypatch) -> None:
        """Jobs live 24 hours and at most 100 are kept."""
        monkeypatch.delenv("PIPELINE_TTL_SECONDS", raising=False)
        monkeypatch.delenv("MAX_STORED_PIPELINES", raising=False)
        settings = Settings(_env_file=None)
        assert settings.pipeline_ttl == timedelta(hours=24)
        assert settings.max_stored_pipelines == 100

    def test_step_timeout_three_minutes(self, monkeypatch) -> None:
        """Each step may run for three minutes."""
        monkeypatch.delenv("STEP_TIMEOUT_MS", raising=False)
        assert Settings(_env_file=None).step_timeout_ms == 180_000

    def test_clinical_documentation_is_critical(self, monkeypatch) -> None:
        """Only the documentation step aborts the pipeline by default."""
        monkeypatch.delenv("CRITICAL_STEPS", raising=False)
        settings = Settings(_env_file=None)
        assert settings.critical_step_set == frozenset({AgentStep.CLINICAL_DOCUMENTATION})


class TestCriticalSteps:
    """Critical step configuration."""

    def test_from_environment(self, monkeypatch) -> None:
        """Critical steps can be set as a JSON list in the environment."""
        monkeypatch.setenv(
            "CRITICAL_STEPS", '["clinical-documentation", "predictive-analytics"]',
        )
        settings = Settings(_env_file=None)
        assert AgentStep.PREDICTIVE_ANALYTICS in settings.critical_step_set

    def test_empty_allowed(self) -> None:
        """No critical steps means every failure degrades."""
        assert Settings(_env_file=None, critical_steps=[]).critical_step_set == frozenset()

    def test_unknown_step_rejected(self) -> None:
        """Unknown step names fail validation."""
        with pytest.raises(ValidationError, match="Unknown critical steps: billing"):
            Settings(_env_file=None, critical_steps=["billing"])
