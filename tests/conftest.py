"""Shared test fixtures for the CARENET test suite."""

import asyncio
from collections.abc import Callable
from datetime import timedelta

import pytest

from carenet.config.settings import Settings
from carenet.services.job_store import JobStore
from carenet.shared.context import StepContext
from carenet.shared.response_models import PipelineRecord, StepOutcome
from carenet.shared.types import AgentStep

ARTIFACTS_BY_STEP: dict[AgentStep, dict] = {
    AgentStep.CLINICAL_DOCUMENTATION: {
        "clinical_note_id": "note-1",
        "clinical_note": {"chief_complaint": "chest pain", "assessment": []},
    },
    AgentStep.MEDICAL_TRANSLATOR: {
        "translation": {"note_id": "note-1", "simplified_summary": "You are ok."},
    },
    AgentStep.PREDICTIVE_ANALYTICS: {
        "risk_assessment_id": "risk-1",
        "risk_assessment": {
            "overall_risk": {"level": "moderate", "score": 40},
            "alerts": [],
        },
    },
    AgentStep.RESEARCH_SYNTHESIS: {
        "research_results": {"papers_analyzed": 0, "synthesis": {}},
    },
    AgentStep.WORKFLOW_AUTOMATION: {
        "appointments": [{"id": "appt-1", "date": "2026-03-01T09:00:00+00:00"}],
    },
}


class FakeExecutor:
    """Step executor that answers from per-step behaviors.

    A behavior is a StepOutcome to return, an exception to raise, or
    a callable taking the step context and returning either.
    Steps without a behavior succeed with their default artifacts.
    """

    def __init__(self, behaviors: dict | None = None, delays: dict | None = None) -> None:
        self.behaviors = {AgentStep(k): v for k, v in (behaviors or {}).items()}
        self.delays = {AgentStep(k): v for k, v in (delays or {}).items()}
        self.calls: list[tuple[AgentStep, str, StepContext]] = []
        self.cancelled: list[AgentStep] = []

    async def execute(
        self,
        step: AgentStep,
        instruction: str,
        context: StepContext,
    ) -> StepOutcome:
        step = AgentStep(step)
        self.calls.append((step, instruction, context))
        delay = self.delays.get(step)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled.append(step)
                raise
        behavior = self.behaviors.get(step)
        if callable(behavior) and not isinstance(behavior, StepOutcome):
            behavior = behavior(context)
        if isinstance(behavior, BaseException):
            raise behavior
        if isinstance(behavior, StepOutcome):
            return behavior
        return StepOutcome(
            agent_name=step.value,
            success=True,
            output=f"{step.value} done",
            artifacts=ARTIFACTS_BY_STEP[step],
        )

    @property
    def steps_called(self) -> list[AgentStep]:
        """Steps executed so far, in call order."""
        return [step for step, _, _ in self.calls]


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults.

    Returns:
        Settings configured for testing (no real API calls).
    """
    return Settings(
        openai_api_key="sk-test-fake-key",
        step_timeout_ms=1000,
        log_level="WARNING",
    )


@pytest.fixture
def store() -> JobStore:
    """Empty job store with the default limits."""
    return JobStore(timedelta(hours=24), 100)


@pytest.fixture
def make_record() -> Callable[..., PipelineRecord]:
    """Factory for pipeline records with test identifiers."""

    def _make(pipeline_id: str = "pipe-test", **overrides) -> PipelineRecord:
        data = {
            "pipeline_id": pipeline_id,
            "patient_id": "patient-1",
            "provider_id": "provider-1",
            "transcript": "Patient reports chest pain for two days.",
        }
        data.update(overrides)
        return PipelineRecord(**data)

    return _make


@pytest.fixture
def step_context(make_record) -> StepContext:
    """Step context over a fresh pipeline record."""
    record = make_record()
    return StepContext(
        patient_id=record.patient_id,
        provider_id=record.provider_id,
        record=record,
    )


@pytest.fixture
def fake_executor() -> type[FakeExecutor]:
    """The FakeExecutor class, for tests that configure step behaviors."""
    return FakeExecutor
