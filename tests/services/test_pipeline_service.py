"""Tests for the pipeline orchestrator."""

import asyncio
import itertools
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from carenet.services import pipeline_service
from carenet.services.job_store import JobStore
from carenet.services.pipeline_service import (
    InvalidPriorStateError,
    PipelineOrchestrator,
    UnknownStepError,
    resolve_steps,
)
from carenet.services.step_runner import StepRunner
from carenet.shared.response_models import StepOutcome
from carenet.shared.types import AGENT_STEP_ORDER, AgentStep, PipelineEventType, PipelineStatus

CLINICAL = AgentStep.CLINICAL_DOCUMENTATION
TRANSLATOR = AgentStep.MEDICAL_TRANSLATOR
PREDICTIVE = AgentStep.PREDICTIVE_ANALYTICS
RESEARCH = AgentStep.RESEARCH_SYNTHESIS
WORKFLOW = AgentStep.WORKFLOW_AUTOMATION

TRANSCRIPT = "Patient reports chest pain for two days."


def _orchestrator(store, executor, **kwargs) -> PipelineOrchestrator:
    """Orchestrator over ``executor`` with a short step timeout."""
    kwargs.setdefault("step_timeout_ms", 1000)
    return PipelineOrchestrator(store, StepRunner(executor), **kwargs)


async def _run(orchestrator, steps=None):
    """Run a pipeline for the standard test patient."""
    return await orchestrator.run_pipeline("patient-1", "provider-1", TRANSCRIPT, steps=steps)


class TestResolveSteps:
    """Step subset resolution."""

    def test_none_means_all(self) -> None:
        """No subset runs every step in order."""
        assert resolve_steps(None) == AGENT_STEP_ORDER

    def test_subset_keeps_pipeline_order(self) -> None:
        """Requested steps are reordered into pipeline order."""
        assert resolve_steps(["workflow-automation", "clinical-documentation"]) == [
            CLINICAL, WORKFLOW,
        ]

    def test_unknown_step_raises(self) -> None:
        """Unknown step names are rejected."""
        with pytest.raises(UnknownStepError, match="billing"):
            resolve_steps(["billing"])

    def test_empty_subset(self) -> None:
        """An empty subset runs nothing."""
        assert resolve_steps([]) == []


class TestRunPipelineSuccess:
    """Runs where every step succeeds."""

    async def test_all_steps_complete(self, store, fake_executor) -> None:
        """Five successful steps give a completed record with merged artifacts."""
        executor = fake_executor({
            RESEARCH: StepOutcome(
                agent_name="research-synthesis",
                success=True,
                artifacts={"research_results": {"papers_analyzed": 0}},
            ),
        })
        record = await _run(_orchestrator(store, executor))

        assert record.status == PipelineStatus.COMPLETED
        assert list(record.step_results) == [step.value for step in AGENT_STEP_ORDER]
        assert record.errors == []
        assert len(record.appointments) == 1
        assert record.research_results == {"papers_analyzed": 0}
        assert record.clinical_note_id == "note-1"
        assert record.current_step is None
        assert record.completed_at is not None
        assert record.total_duration_ms is not None

    async def test_final_record_is_stored(self, store, fake_executor) -> None:
        """The store holds the finished record under its ID."""
        orchestrator = _orchestrator(store, fake_executor())
        record = await _run(orchestrator)
        assert orchestrator.get_status(record.pipeline_id) == record
        assert store.get(record.pipeline_id).status == PipelineStatus.COMPLETED

    async def test_steps_run_sequentially_on_merged_state(self, store, fake_executor) -> None:
        """Each step sees the artifacts merged by the steps before it."""
        seen_note_ids = []

        def translator(context):
            seen_note_ids.append(context.record.clinical_note_id)
            return StepOutcome(agent_name="medical-translator", success=True)

        executor = fake_executor({TRANSLATOR: translator})
        await _run(_orchestrator(store, executor))

        assert seen_note_ids == ["note-1"]
        assert executor.steps_called == AGENT_STEP_ORDER

    async def test_running_status_visible_mid_run(self, store, fake_executor) -> None:
        """While a step executes, the stored record is running on that step."""
        snapshots = []

        def predictive(context):
            stored = store.get(context.record.pipeline_id)
            snapshots.append((stored.status, stored.current_step, stored.completed_at))
            return StepOutcome(agent_name="predictive-analytics", success=True)

        await _run(_orchestrator(store, fake_executor({PREDICTIVE: predictive})))

        assert snapshots == [(PipelineStatus.RUNNING, "predictive-analytics", None)]

    async def test_step_subset(self, store, fake_executor) -> None:
        """Only the requested steps run, in pipeline order."""
        executor = fake_executor()
        record = await _run(
            _orchestrator(store, executor),
            steps=["predictive-analytics", "clinical-documentation"],
        )
        assert list(record.step_results) == ["clinical-documentation", "predictive-analytics"]
        assert executor.steps_called == [CLINICAL, PREDICTIVE]
        assert record.status == PipelineStatus.COMPLETED

    async def test_unknown_step_creates_nothing(self, store, fake_executor) -> None:
        """An invalid subset is rejected before any record exists."""
        with pytest.raises(UnknownStepError):
            await _run(_orchestrator(store, fake_executor()), steps=["billing"])
        assert len(store) == 0

    async def test_list_field_grows_across_steps(self, store, fake_executor) -> None:
        """Appended lists keep earlier elements when later steps add more."""
        executor = fake_executor({
            RESEARCH: StepOutcome(
                agent_name="research-synthesis",
                success=True,
                artifacts={"lab_orders": [{"id": "lab-1"}]},
            ),
            WORKFLOW: StepOutcome(
                agent_name="workflow-automation",
                success=True,
                artifacts={"lab_orders": [{"id": "lab-2"}]},
            ),
        })
        record = await _run(_orchestrator(store, executor))
        assert [o["id"] for o in record.lab_orders] == ["lab-1", "lab-2"]


class TestCriticalStepPolicy:
    """Abort on critical failure, degrade otherwise."""

    async def test_critical_exception_aborts(self, store, fake_executor) -> None:
        """A critical step that raises fails the pipeline after one step."""
        executor = fake_executor({CLINICAL: RuntimeError("boom")})
        record = await _run(_orchestrator(store, executor))

        assert record.status == PipelineStatus.FAILED
        assert list(record.step_results) == ["clinical-documentation"]
        assert len(record.errors) == 1
        assert record.errors[0].step == "clinical-documentation"
        assert "internal error" in record.errors[0].message
        assert record.current_step is None
        assert record.completed_at is not None
        assert executor.steps_called == [CLINICAL]

    async def test_critical_reported_failure_aborts(self, store, fake_executor) -> None:
        """A critical step returning success=False also aborts."""
        executor = fake_executor({CLINICAL: StepOutcome.failure("clinical-documentation", "no note")})
        record = await _run(_orchestrator(store, executor))
        assert record.status == PipelineStatus.FAILED
        assert record.errors[0].message == "no note"
        assert record.clinical_note_id is None

    async def test_non_critical_timeout_degrades(self, store, fake_executor) -> None:
        """A timed-out non-critical step is recorded and the run continues."""
        executor = fake_executor(delays={TRANSLATOR: 5})
        record = await _run(_orchestrator(store, executor, step_timeout_ms=50))

        assert record.status == PipelineStatus.COMPLETED
        assert record.step_results["medical-translator"].success is False
        assert len(record.errors) == 1
        assert "timed out" in record.errors[0].message
        assert list(record.step_results) == [step.value for step in AGENT_STEP_ORDER]

    async def test_non_critical_failures_accumulate(self, store, fake_executor) -> None:
        """Several degraded steps each add one error, in failure order."""
        executor = fake_executor({
            PREDICTIVE: StepOutcome.failure("predictive-analytics", "no vitals"),
            WORKFLOW: ValueError("calendar down"),
        })
        record = await _run(_orchestrator(store, executor))
        assert record.status == PipelineStatus.COMPLETED
        assert [e.step for e in record.errors] == ["predictive-analytics", "workflow-automation"]
        assert record.risk_assessment_id is None

    async def test_configured_critical_step(self, store, fake_executor) -> None:
        """Any configured step can be critical."""
        executor = fake_executor({PREDICTIVE: StepOutcome.failure("predictive-analytics", "x")})
        record = await _run(_orchestrator(
            store, executor, critical_steps={CLINICAL, PREDICTIVE},
        ))
        assert record.status == PipelineStatus.FAILED
        assert list(record.step_results) == [
            "clinical-documentation", "medical-translator", "predictive-analytics",
        ]

    async def test_no_critical_steps(self, store, fake_executor) -> None:
        """With no critical steps, even the first failure degrades."""
        executor = fake_executor({CLINICAL: RuntimeError("boom")})
        record = await _run(_orchestrator(store, executor, critical_steps=()))
        assert record.status == PipelineStatus.COMPLETED
        assert len(record.step_results) == 5


class TestStoreHousekeeping:
    """Eviction triggered by each run."""

    async def test_capacity_holds_after_101_runs(self, fake_executor, monkeypatch) -> None:
        """Running 101 pipelines keeps at most 100 and drops the oldest."""
        counter = itertools.count()
        monkeypatch.setattr(
            pipeline_service, "new_pipeline_id", lambda: f"pipe-{next(counter):04d}",
        )
        store = JobStore(timedelta(hours=24), 100)
        orchestrator = _orchestrator(store, fake_executor())

        first = await _run(orchestrator, steps=[])
        ids = [first.pipeline_id]
        for _ in range(100):
            record = await _run(orchestrator, steps=[])
            ids.append(record.pipeline_id)
            assert len(store) <= 100

        assert len(store) == 100
        assert orchestrator.get_status(first.pipeline_id) is None
        assert all(orchestrator.get_status(i) is not None for i in ids[1:])

    async def test_concurrent_runs_respect_capacity(self, fake_executor) -> None:
        """A run evicted by another run is not written back afterwards."""
        store = JobStore(timedelta(hours=24), 1)
        slow = _orchestrator(store, fake_executor(delays={CLINICAL: 0.2}))
        fast = _orchestrator(store, fake_executor())

        first_run = asyncio.create_task(_run(slow))
        await asyncio.sleep(0.05)
        second = await _run(fast)
        assert len(store) == 1

        first = await first_run
        assert first.status == PipelineStatus.COMPLETED
        assert len(store) == 1
        assert first.pipeline_id not in store
        assert second.pipeline_id in store

    async def test_expired_records_evicted_on_run(self, store, fake_executor, make_record) -> None:
        """A run starts by dropping records older than the TTL."""
        stale = make_record("stale", started_at=datetime.now(UTC) - timedelta(days=2))
        store.insert(stale)
        await _run(_orchestrator(store, fake_executor()), steps=[])
        assert "stale" not in store

    async def test_list_all_most_recent_first(self, store, fake_executor) -> None:
        """Query results are ordered by start time, newest first."""
        orchestrator = _orchestrator(store, fake_executor())
        for _ in range(3):
            await _run(orchestrator, steps=[])
        started = [r.started_at for r in orchestrator.list_all()]
        assert started == sorted(started, reverse=True)
        assert len(started) == 3

    async def test_get_status_unknown(self, store, fake_executor) -> None:
        """Unknown IDs report not-found."""
        assert _orchestrator(store, fake_executor()).get_status("nope") is None


class TestRunSingleStep:
    """Single-step execution outside the pipeline."""

    async def test_never_touches_store(self, store, fake_executor) -> None:
        """A single step leaves the shared store untouched."""
        executor = fake_executor()
        outcome = await _orchestrator(store, executor).run_single_step(
            "predictive-analytics",
            "patient-1",
            "provider-1",
            prior_state={"clinical_note_id": "note-7", "clinical_note": {"chief_complaint": "x"}},
        )
        assert outcome.success is True
        assert "risk_assessment_id" in outcome.artifacts
        assert len(store) == 0
        assert executor.steps_called == [PREDICTIVE]

    async def test_prior_state_reaches_step(self, store, fake_executor) -> None:
        """Derived fields from the prior state are visible to the step."""
        executor = fake_executor()
        await _orchestrator(store, executor).run_single_step(
            "medical-translator",
            "patient-1",
            "provider-1",
            prior_state={"clinical_note_id": "note-7", "status": "failed", "pipeline_id": "x"},
        )
        _, instruction, context = executor.calls[0]
        assert context.record.clinical_note_id == "note-7"
        assert context.record.status == PipelineStatus.RUNNING
        assert context.record.pipeline_id != "x"
        assert "note-7" in instruction

    async def test_returns_failure_outcome(self, store, fake_executor) -> None:
        """Failures come back as outcomes, not exceptions."""
        executor = fake_executor({WORKFLOW: RuntimeError("boom")})
        outcome = await _orchestrator(store, executor).run_single_step(
            "workflow-automation", "patient-1", "provider-1",
        )
        assert outcome.success is False
        assert "internal error" in outcome.error

    async def test_unknown_step_raises(self, store, fake_executor) -> None:
        """Unknown step names are rejected."""
        with pytest.raises(UnknownStepError):
            await _orchestrator(store, fake_executor()).run_single_step(
                "billing", "patient-1", "provider-1",
            )

    async def test_malformed_prior_state_raises(self, store, fake_executor) -> None:
        """Prior state that does not fit the record is rejected before running."""
        executor = fake_executor()
        with pytest.raises(InvalidPriorStateError, match="appointments"):
            await _orchestrator(store, executor).run_single_step(
                "medical-translator",
                "patient-1",
                "provider-1",
                prior_state={"appointments": "not-a-list", "clinical_note_id": "note-7"},
            )
        assert executor.calls == []


class TestProgressEvents:
    """Progress notifications to the observer."""

    async def test_event_sequence_for_success(self, store, fake_executor) -> None:
        """A successful two-step run emits start, per-step and finish events."""
        on_event = AsyncMock()
        await _run(
            _orchestrator(store, fake_executor(), on_event=on_event),
            steps=["clinical-documentation", "medical-translator"],
        )
        types = [call.args[0]["data"]["event_type"] for call in on_event.await_args_list]
        assert types == [
            PipelineEventType.PIPELINE_STARTED.value,
            PipelineEventType.STEP_STARTED.value,
            PipelineEventType.STEP_COMPLETED.value,
            PipelineEventType.STEP_STARTED.value,
            PipelineEventType.STEP_COMPLETED.value,
            PipelineEventType.PIPELINE_FINISHED.value,
        ]
        final = on_event.await_args_list[-1].args[0]
        assert final["type"] == "pipeline"
        assert final["data"]["status"] == "completed"

    async def test_abort_emits_aborted(self, store, fake_executor) -> None:
        """A critical failure emits STEP_FAILED then PIPELINE_ABORTED."""
        on_event = AsyncMock()
        executor = fake_executor({CLINICAL: RuntimeError("boom")})
        await _run(_orchestrator(store, executor, on_event=on_event))
        types = [call.args[0]["data"]["event_type"] for call in on_event.await_args_list]
        assert types[-3:] == [
            PipelineEventType.STEP_FAILED.value,
            PipelineEventType.PIPELINE_ABORTED.value,
            PipelineEventType.PIPELINE_FINISHED.value,
        ]

    async def test_observer_errors_do_not_affect_run(self, store, fake_executor) -> None:
        """A failing observer is logged and the run still completes."""
        on_event = AsyncMock(side_effect=RuntimeError("socket gone"))
        record = await _run(_orchestrator(store, fake_executor(), on_event=on_event))
        assert record.status == PipelineStatus.COMPLETED
        assert record.errors == []
