"""Pydantic models for step outcomes and pipeline records.

Each model defines the typed contract passed between the step runner,
the artifact merger and the pipeline controller, replacing raw dicts.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from carenet.shared.types import PipelineStatus

UNSUCCESSFUL_RESULT_MESSAGE = "Agent returned unsuccessful result"


class ToolCallRecord(BaseModel):
    """One tool invocation made by a step agent.

    Attributes:
        tool_name: Name of the invoked tool.
        call_id: SDK call identifier pairing the call with its output.
        success: False when the tool raised or reported an error.
        error: Error text from the tool output, if any.
    """

    tool_name: str
    call_id: str | None = None
    success: bool = True
    error: str | None = None


class StepTelemetry(BaseModel):
    """Timing and usage figures for one step execution."""

    duration_ms: int = 0
    tool_invocations: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


class StepOutcome(BaseModel):
    """Result of executing one pipeline step.

    Attributes:
        agent_name: Name of the agent that handled the step.
        success: Whether the step produced a usable result.
        output: Final free-text answer of the agent.
        artifacts: Named values to fold into the pipeline record.
        error: Failure description when success is False.
        telemetry: Duration and usage figures.
        tool_calls: Tools invoked during the step, in call order.
    """

    agent_name: str = ""
    success: bool
    output: str = ""
    artifacts: dict[str, Any] = {}
    error: str | None = None
    telemetry: StepTelemetry = Field(default_factory=StepTelemetry)
    tool_calls: list[ToolCallRecord] = []

    @classmethod
    def failure(cls, agent_name: str, message: str) -> "StepOutcome":
        """Build an unsuccessful outcome carrying only an error message.

        Args:
            agent_name: Step or agent name the failure belongs to.
            message: Error text recorded for the step.

        Returns:
            StepOutcome with success False.
        """
        return cls(agent_name=agent_name, success=False, error=message)

    @property
    def error_message(self) -> str:
        """Error text to record, with a fallback for silent failures."""
        return self.error or UNSUCCESSFUL_RESULT_MESSAGE


class PipelineError(BaseModel):
    """A failure recorded against a pipeline run."""

    step: str
    message: str
    timestamp: datetime


class PipelineRecord(BaseModel):
    """Mutable state threaded through one pipeline run.

    Identity and input fields are set at creation and never change.
    Derived fields are written only by the artifact merger: scalar
    fields are overwritten, list fields only grow.
    """

    pipeline_id: str
    patient_id: str
    provider_id: str
    transcript: str = ""

    # Derived state
    clinical_note_id: str | None = None
    clinical_note: dict[str, Any] | None = None
    translation: dict[str, Any] | None = None
    risk_assessment_id: str | None = None
    risk_assessment: dict[str, Any] | None = None
    research_results: dict[str, Any] | None = None
    appointments: list[dict[str, Any]] = []
    insurance_claims: list[dict[str, Any]] = []
    lab_orders: list[dict[str, Any]] = []

    # Bookkeeping
    step_results: dict[str, StepOutcome] = {}
    errors: list[PipelineError] = []
    status: PipelineStatus = PipelineStatus.RUNNING
    current_step: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def total_duration_ms(self) -> int | None:
        """Wall time of the run, or None while it is still running."""
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


DERIVED_FIELDS: frozenset[str] = frozenset({
    "clinical_note_id",
    "clinical_note",
    "translation",
    "risk_assessment_id",
    "risk_assessment",
    "research_results",
    "appointments",
    "insurance_claims",
    "lab_orders",
})


# --- Agent tool results ---


class PipelineContextResult(BaseModel):
    """Snapshot of the pipeline state exposed to a step agent."""

    patient_id: str
    provider_id: str
    transcript: str = ""
    clinical_note_id: str | None = None
    clinical_note: dict[str, Any] | None = None
    translation: dict[str, Any] | None = None
    risk_assessment: dict[str, Any] | None = None
    research_results: dict[str, Any] | None = None
    completed_steps: list[str] = []


class ClinicalNoteResult(BaseModel):
    """Result of creating a clinical note."""

    created: bool
    note_id: str | None = None
    error: str | None = None


class TranslationResult(BaseModel):
    """Result of saving a patient-friendly translation."""

    saved: bool
    note_id: str | None = None
    error: str | None = None


class RiskAssessmentResult(BaseModel):
    """Result of saving a risk assessment."""

    created: bool
    assessment_id: str | None = None
    overall_level: str | None = None
    alert_count: int = 0
    error: str | None = None


class ResearchSynthesisResult(BaseModel):
    """Result of saving a research synthesis."""

    saved: bool
    papers_analyzed: int = 0
    error: str | None = None


class AppointmentResult(BaseModel):
    """Result of creating a follow-up appointment."""

    created: bool
    appointment_id: str | None = None
    scheduled_at: str | None = None
    error: str | None = None


class InsuranceClaimResult(BaseModel):
    """Result of drafting an insurance claim."""

    created: bool
    claim_id: str | None = None
    claim_number: str | None = None
    error: str | None = None


class LabOrderResult(BaseModel):
    """Result of ordering a lab test."""

    created: bool
    order_id: str | None = None
    error: str | None = None
