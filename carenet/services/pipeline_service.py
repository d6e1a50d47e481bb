"""Pipeline orchestrator — runs the ordered agent steps over one record.

Drives the fixed step order over a pipeline record: each step runs to
completion (success, failure or timeout) before the next one starts,
because later instructions are built from earlier steps' merged output.

Failure policy:
- A failed critical step marks the pipeline failed and stops the run;
  later steps are never attempted.
- Any other failure is recorded in ``errors`` and the run continues
  (graceful degradation).

Step-level errors never raise out of run_pipeline(); callers inspect
``status``, ``errors`` and ``step_results`` on the returned record.
A record is inserted once when its run starts. Later writes only
replace it, so runs overlapping on the event loop never bring back a
record another run's eviction removed.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from carenet.services.artifact_merger import merge_artifacts
from carenet.services.job_store import JobStore
from carenet.services.step_runner import StepRunner
from carenet.shared.response_models import (
    DERIVED_FIELDS,
    PipelineError,
    PipelineRecord,
    StepOutcome,
)
from carenet.shared.types import (
    AGENT_STEP_ORDER,
    AgentStep,
    PipelineEventType,
    PipelineStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT_MS = 3 * 60 * 1000
DEFAULT_CRITICAL_STEPS: frozenset[AgentStep] = frozenset({AgentStep.CLINICAL_DOCUMENTATION})

EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


class UnknownStepError(ValueError):
    """Raised when a caller names a step outside the pipeline order."""


class InvalidPriorStateError(ValueError):
    """Raised when single-step prior state does not fit the pipeline record."""


def resolve_steps(steps: Iterable[str] | None = None) -> list[AgentStep]:
    """Filter the pipeline order down to the requested steps.

    Relative order always follows AGENT_STEP_ORDER, whatever order the
    caller listed the steps in.

    Args:
        steps: Step names to run. None runs every step.

    Returns:
        Steps to execute, in pipeline order.

    Raises:
        UnknownStepError: If a name is not a pipeline step.
    """
    if steps is None:
        return list(AGENT_STEP_ORDER)
    requested = set()
    for name in steps:
        try:
            requested.add(AgentStep(name))
        except ValueError as exc:
            raise UnknownStepError(f"Unknown pipeline step: {name}") from exc
    return [step for step in AGENT_STEP_ORDER if step in requested]


def new_pipeline_id() -> str:
    """Generate a unique pipeline identifier."""
    return f"pipe-{uuid.uuid4()}"


class PipelineOrchestrator:
    """Runs pipelines and answers status queries over a shared job store.

    Args:
        store: Job store shared by every run in the process.
        runner: Step runner used to execute each step.
        step_timeout_ms: Per-step timeout.
        critical_steps: Steps whose failure aborts the pipeline.
        on_event: Optional async observer for progress events.
    """

    def __init__(
        self,
        store: JobStore,
        runner: StepRunner,
        *,
        step_timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS,
        critical_steps: Iterable[AgentStep] = DEFAULT_CRITICAL_STEPS,
        on_event: EventCallback | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self._step_timeout_ms = step_timeout_ms
        self._critical_steps = frozenset(AgentStep(s) for s in critical_steps)
        self._on_event = on_event

    @property
    def critical_steps(self) -> frozenset[AgentStep]:
        """Steps whose failure aborts a run."""
        return self._critical_steps

    async def run_pipeline(
        self,
        patient_id: str,
        provider_id: str,
        transcript: str,
        steps: Sequence[str] | None = None,
    ) -> PipelineRecord:
        """Run the pipeline to a terminal status.

        Args:
            patient_id: Patient the encounter concerns.
            provider_id: Provider requesting the run.
            transcript: Encounter transcript.
            steps: Optional subset of steps; pipeline order is kept.

        Returns:
            The final pipeline record (completed or failed).

        Raises:
            UnknownStepError: If ``steps`` names an unknown step. Raised
                before any record is created.
        """
        steps_to_run = resolve_steps(steps)
        self._store.evict(reserve=1)

        record = PipelineRecord(
            pipeline_id=new_pipeline_id(),
            patient_id=patient_id,
            provider_id=provider_id,
            transcript=transcript,
        )
        self._store.insert(record)
        logger.info(
            "pipeline_started",
            extra={
                "pipeline_id": record.pipeline_id,
                "patient_id": patient_id,
                "provider_id": provider_id,
                "steps": [step.value for step in steps_to_run],
            },
        )
        await self._emit(PipelineEventType.PIPELINE_STARTED, record, steps=[
            step.value for step in steps_to_run
        ])

        for step in steps_to_run:
            record = await self._run_step(record, step)
            if record.status == PipelineStatus.FAILED:
                break

        record = self._finalize(record)
        self._save(record)
        logger.info(
            "pipeline_finished",
            extra={
                "pipeline_id": record.pipeline_id,
                "status": record.status.value,
                "steps_completed": len(record.step_results),
                "steps_planned": len(steps_to_run),
                "errors": len(record.errors),
                "duration_ms": record.total_duration_ms,
            },
        )
        await self._emit(PipelineEventType.PIPELINE_FINISHED, record)
        return record

    async def _run_step(self, record: PipelineRecord, step: AgentStep) -> PipelineRecord:
        """Execute one step and fold its outcome into the record.

        Args:
            record: Current pipeline record.
            step: Step to execute.

        Returns:
            The updated record; status is FAILED if a critical step failed.
        """
        record.current_step = step.value
        self._save(record)
        await self._emit(PipelineEventType.STEP_STARTED, record, step=step.value)

        outcome = await self._runner.run(step, record, self._step_timeout_ms)
        record.step_results[step.value] = outcome

        if outcome.success:
            record = merge_artifacts(record, step.value, outcome)
            self._save(record)
            await self._emit(
                PipelineEventType.STEP_COMPLETED,
                record,
                step=step.value,
                duration_ms=outcome.telemetry.duration_ms,
            )
            return record

        record.errors.append(PipelineError(
            step=step.value,
            message=outcome.error_message,
            timestamp=datetime.now(UTC),
        ))
        logger.warning(
            "step_failed",
            extra={
                "pipeline_id": record.pipeline_id,
                "step": step.value,
                "error": outcome.error_message,
            },
        )
        await self._emit(
            PipelineEventType.STEP_FAILED,
            record,
            step=step.value,
            error=outcome.error_message,
        )

        if step in self._critical_steps:
            record.status = PipelineStatus.FAILED
            logger.error(
                "pipeline_aborted",
                extra={"pipeline_id": record.pipeline_id, "critical_step": step.value},
            )
            await self._emit(PipelineEventType.PIPELINE_ABORTED, record, step=step.value)
        return record

    def _save(self, record: PipelineRecord) -> None:
        """Write run progress back unless eviction already dropped the record."""
        if not self._store.replace(record):
            logger.info(
                "pipeline_record_evicted_mid_run",
                extra={"pipeline_id": record.pipeline_id},
            )

    @staticmethod
    def _finalize(record: PipelineRecord) -> PipelineRecord:
        """Stamp completion and settle the terminal status."""
        record.completed_at = datetime.now(UTC)
        if record.status != PipelineStatus.FAILED:
            record.status = PipelineStatus.COMPLETED
        record.current_step = None
        return record

    async def run_single_step(
        self,
        step: str,
        patient_id: str,
        provider_id: str,
        transcript: str = "",
        prior_state: Mapping[str, Any] | None = None,
    ) -> StepOutcome:
        """Run one step outside any pipeline and return its raw outcome.

        The transient record built here is never stored.

        Args:
            step: Step to run.
            patient_id: Patient the request concerns.
            provider_id: Provider requesting the run.
            transcript: Encounter transcript, if any.
            prior_state: Derived fields from earlier steps (e.g.
                clinical_note_id, clinical_note). Other keys are ignored.

        Returns:
            The step outcome (success, failure or timeout).

        Raises:
            UnknownStepError: If ``step`` is not a pipeline step.
            InvalidPriorStateError: If a prior state field has the wrong
                shape for the pipeline record.
        """
        (agent_step,) = resolve_steps([step])
        data: dict[str, Any] = {
            "pipeline_id": f"single-{uuid.uuid4()}",
            "patient_id": patient_id,
            "provider_id": provider_id,
            "transcript": transcript,
        }
        if prior_state:
            data.update({k: v for k, v in prior_state.items() if k in DERIVED_FIELDS})
        try:
            record = PipelineRecord.model_validate(data)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise InvalidPriorStateError(
                f"Invalid prior state fields: {', '.join(fields)}"
            ) from exc

        logger.info(
            "single_step_started",
            extra={"step": agent_step.value, "patient_id": patient_id},
        )
        outcome = await self._runner.run(agent_step, record, self._step_timeout_ms)
        if not outcome.success:
            logger.warning(
                "single_step_failed",
                extra={"step": agent_step.value, "error": outcome.error_message},
            )
        return outcome

    def get_status(self, pipeline_id: str) -> PipelineRecord | None:
        """Look up a pipeline record without side effects."""
        return self._store.get(pipeline_id)

    def list_all(self) -> list[PipelineRecord]:
        """All retained pipeline records, most recently started first."""
        return self._store.list_all()

    async def _emit(
        self,
        event_type: PipelineEventType,
        record: PipelineRecord,
        **details: Any,
    ) -> None:
        """Notify the progress observer; its failures never affect the run."""
        if self._on_event is None:
            return
        event = {
            "type": "pipeline",
            "data": {
                "event_type": event_type.value,
                "pipeline_id": record.pipeline_id,
                "patient_id": record.patient_id,
                "status": record.status.value,
                "current_step": record.current_step,
                "timestamp": datetime.now(UTC).isoformat(),
                **details,
            },
        }
        try:
            await self._on_event(event)
        except Exception:
            logger.warning(
                "pipeline_event_delivery_failed",
                extra={"event_type": event_type.value},
                exc_info=True,
            )
