"""Agent pipeline REST API and progress WebSocket.

Runs the full agent pipeline or a single agent, reports pipeline status
from the job store, and streams progress events to dashboards.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from carenet.agents.pipeline import AGENT_CATALOG
from carenet.api.event_bus import PipelineEventBus
from carenet.services.pipeline_service import (
    InvalidPriorStateError,
    PipelineOrchestrator,
    UnknownStepError,
)
from carenet.shared.response_models import PipelineRecord, StepOutcome
from carenet.shared.types import AGENT_STEP_ORDER, PipelineStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])
ws_router = APIRouter(tags=["websocket"])

MAX_TRANSCRIPT_LENGTH = 50_000
PIPELINE_DESCRIPTION = (
    "Agents run sequentially: Clinical Doc → Translator → Predictive →"
    " Research → Workflow. State is passed between agents."
)


# --- Request Models ---


class PipelineRunRequest(BaseModel):
    """Request body for a full pipeline run.

    Attributes:
        patient_id: Patient the encounter concerns.
        provider_id: Provider requesting the run.
        transcript: Encounter transcript.
        steps: Optional subset of steps to run, kept in pipeline order.
    """

    patient_id: str = Field(min_length=1)
    provider_id: str = Field(min_length=1)
    transcript: str = Field(min_length=10, max_length=MAX_TRANSCRIPT_LENGTH)
    steps: list[str] | None = None


class SingleAgentRequest(BaseModel):
    """Request body for running one agent on its own.

    Attributes:
        patient_id: Patient the request concerns.
        provider_id: Provider requesting the run.
        transcript: Encounter transcript, if any.
        context: Prior pipeline state such as clinical_note_id.
    """

    patient_id: str = Field(min_length=1)
    provider_id: str = Field(min_length=1)
    transcript: str = Field(default="", max_length=MAX_TRANSCRIPT_LENGTH)
    context: dict[str, Any] = {}


# --- Dependencies ---


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Return the orchestrator built by the application lifespan."""
    return request.app.state.orchestrator


# --- Routes ---


@router.get("/info")
async def get_agent_info() -> dict[str, Any]:
    """List the available agents and the pipeline order.

    Returns:
        Agent catalog and pipeline description.
    """
    return {
        "success": True,
        "data": {
            "agents": AGENT_CATALOG,
            "pipeline": {
                "order": [step.value for step in AGENT_STEP_ORDER],
                "description": PIPELINE_DESCRIPTION,
            },
        },
    }


@router.post("/pipeline/run")
async def run_agent_pipeline(
    body: PipelineRunRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Run the agent pipeline to completion.

    Args:
        body: Pipeline run request.
        orchestrator: Injected pipeline orchestrator.

    Returns:
        Success flag and the serialized final pipeline record.

    Raises:
        HTTPException: 400 if ``steps`` names an unknown step.
    """
    logger.info(
        "pipeline_run_requested",
        extra={"patient_id": body.patient_id, "provider_id": body.provider_id},
    )
    try:
        record = await orchestrator.run_pipeline(
            body.patient_id,
            body.provider_id,
            body.transcript,
            steps=body.steps,
        )
    except UnknownStepError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "success": record.status == PipelineStatus.COMPLETED,
        "data": _serialize_pipeline_result(record),
    }


@router.get("/pipeline/status/{pipeline_id}")
async def get_pipeline_status(
    pipeline_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Report a pipeline's current progress.

    Args:
        pipeline_id: Pipeline identifier.
        orchestrator: Injected pipeline orchestrator.

    Returns:
        Status summary with an artifact overview.

    Raises:
        HTTPException: 404 if the pipeline is unknown or evicted.
    """
    record = orchestrator.get_status(pipeline_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Pipeline not found")
    return {"success": True, "data": _serialize_status(record)}


@router.get("/pipelines")
async def list_pipelines(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """List retained pipeline runs, most recent first."""
    return {
        "success": True,
        "data": [_serialize_summary(record) for record in orchestrator.list_all()],
    }


@router.post("/run/{agent_name}")
async def run_single_agent(
    agent_name: str,
    body: SingleAgentRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Run one agent outside any pipeline.

    Args:
        agent_name: Pipeline step name of the agent.
        body: Single agent request.
        orchestrator: Injected pipeline orchestrator.

    Returns:
        Success flag and the serialized step outcome.

    Raises:
        HTTPException: 400 if ``agent_name`` is not a pipeline step.
            422 if ``context`` holds a malformed prior state field.
    """
    try:
        outcome = await orchestrator.run_single_step(
            agent_name,
            body.patient_id,
            body.provider_id,
            transcript=body.transcript,
            prior_state=body.context,
        )
    except UnknownStepError as exc:
        valid = ", ".join(step.value for step in AGENT_STEP_ORDER)
        raise HTTPException(
            status_code=400,
            detail=f"Invalid agent name. Must be one of: {valid}",
        ) from exc
    except InvalidPriorStateError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"success": outcome.success, "data": _serialize_outcome(outcome)}


# --- WebSocket ---


@ws_router.websocket("/ws/pipelines")
async def websocket_pipelines(websocket: WebSocket) -> None:
    """Stream pipeline progress events to a dashboard.

    Args:
        websocket: Incoming WebSocket connection.
    """
    bus: PipelineEventBus = websocket.app.state.event_bus
    await websocket.accept()
    bus.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        bus.disconnect(websocket)


# --- Serializers ---


def _serialize_step(step: str, outcome: StepOutcome) -> dict[str, Any]:
    """Summarize one step result for a pipeline response."""
    return {
        "step": step,
        "success": outcome.success,
        "agent_name": outcome.agent_name,
        "output": outcome.output,
        "tool_call_count": len(outcome.tool_calls),
        "tokens_used": outcome.telemetry.input_tokens + outcome.telemetry.output_tokens,
        "duration_ms": outcome.telemetry.duration_ms,
        "error": outcome.error,
    }


def _serialize_pipeline_result(record: PipelineRecord) -> dict[str, Any]:
    """Convert a finished pipeline record into the run response.

    Args:
        record: Final pipeline record.

    Returns:
        JSON-serializable dict with artifacts, step summaries and errors.
    """
    risk = record.risk_assessment
    research = record.research_results
    return {
        "pipeline_id": record.pipeline_id,
        "status": record.status.value,
        "patient_id": record.patient_id,
        "clinical_note_id": record.clinical_note_id,
        "translation": record.translation,
        "risk_assessment_id": record.risk_assessment_id,
        "risk_assessment": {
            "overall_risk": risk.get("overall_risk"),
            "alert_count": len(risk.get("alerts") or []),
        } if risk else None,
        "research_results": {
            "papers_analyzed": research.get("papers_analyzed"),
            "synthesis": research.get("synthesis"),
        } if research else None,
        "appointments": record.appointments,
        "insurance_claims": record.insurance_claims,
        "lab_orders": record.lab_orders,
        "steps": [
            _serialize_step(step, outcome)
            for step, outcome in record.step_results.items()
        ],
        "errors": [error.model_dump(mode="json") for error in record.errors],
        "started_at": record.started_at.isoformat(),
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        "total_duration_ms": record.total_duration_ms,
    }


def _serialize_status(record: PipelineRecord) -> dict[str, Any]:
    """Convert a pipeline record into the status response."""
    return {
        "pipeline_id": record.pipeline_id,
        "status": record.status.value,
        "current_step": record.current_step,
        "completed_steps": list(record.step_results),
        "errors": [error.model_dump(mode="json") for error in record.errors],
        "started_at": record.started_at.isoformat(),
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        "artifacts": {
            "clinical_note_id": record.clinical_note_id,
            "has_translation": bool(record.translation),
            "risk_assessment_id": record.risk_assessment_id,
            "has_research": bool(record.research_results),
            "appointment_count": len(record.appointments),
            "claim_count": len(record.insurance_claims),
            "lab_order_count": len(record.lab_orders),
        },
    }


def _serialize_summary(record: PipelineRecord) -> dict[str, Any]:
    """Convert a pipeline record into a list entry."""
    return {
        "pipeline_id": record.pipeline_id,
        "patient_id": record.patient_id,
        "status": record.status.value,
        "steps_completed": len(record.step_results),
        "total_steps": len(AGENT_STEP_ORDER),
        "errors": len(record.errors),
        "started_at": record.started_at.isoformat(),
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
    }


def _serialize_outcome(outcome: StepOutcome) -> dict[str, Any]:
    """Convert a single-agent outcome into the run response."""
    return {
        "agent_name": outcome.agent_name,
        "output": outcome.output,
        "artifacts": outcome.artifacts,
        "tool_calls": [call.model_dump() for call in outcome.tool_calls],
        "tokens_used": outcome.telemetry.input_tokens + outcome.telemetry.output_tokens,
        "duration_ms": outcome.telemetry.duration_ms,
        "error": outcome.error,
    }
