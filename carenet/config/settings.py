"""Application configuration loaded from environment variables."""

from datetime import timedelta

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from carenet.shared.types import AGENT_STEP_ORDER, AgentStep


class Settings(BaseSettings):
    """Central configuration for the CARENET pipeline orchestrator.

    Args loaded from .env file and environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Job store limits
    pipeline_ttl_seconds: int = 24 * 60 * 60
    max_stored_pipelines: int = 100

    # Step execution
    step_timeout_ms: int = 3 * 60 * 1000
    critical_steps: list[str] = [AgentStep.CLINICAL_DOCUMENTATION.value]

    # OpenAI Agents SDK
    openai_api_key: str = ""
    agent_model: str = "gpt-4o"
    agent_max_turns: int = 8

    log_level: str = "INFO"

    # Dashboard / CORS
    cors_allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    @field_validator("critical_steps")
    @classmethod
    def _known_steps_only(cls, value: list[str]) -> list[str]:
        """Reject critical step names outside the pipeline order.

        Args:
            value: Configured critical step names.

        Returns:
            The validated step names.

        Raises:
            ValueError: If a name is not a pipeline step.
        """
        known = {step.value for step in AGENT_STEP_ORDER}
        unknown = [name for name in value if name not in known]
        if unknown:
            raise ValueError(f"Unknown critical steps: {', '.join(unknown)}")
        return value

    @property
    def pipeline_ttl(self) -> timedelta:
        """Job time-to-live as a timedelta."""
        return timedelta(seconds=self.pipeline_ttl_seconds)

    @property
    def critical_step_set(self) -> frozenset[AgentStep]:
        """Critical steps as enum members."""
        return frozenset(AgentStep(name) for name in self.critical_steps)


def get_settings() -> Settings:
    """Return a Settings instance.

    Returns:
        Application settings loaded from env.
    """
    return Settings()
