"""Read-only context tool shared by every step agent.

Uses the OpenAI Agents SDK (openai-agents package) for tool definition.
The 'agents' import is the external SDK, NOT carenet/agents/.
"""

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import RunContextWrapper, function_tool
from carenet.shared.context import StepContext
from carenet.shared.response_models import PipelineContextResult


def describe_pipeline_context(context: StepContext) -> PipelineContextResult:
    """Summarize what earlier steps have produced for this pipeline.

    Args:
        context: Context of the running step.

    Returns:
        PipelineContextResult with identifiers and derived state.
    """
    record = context.record
    return PipelineContextResult(
        patient_id=context.patient_id,
        provider_id=context.provider_id,
        transcript=record.transcript,
        clinical_note_id=record.clinical_note_id,
        clinical_note=record.clinical_note,
        translation=record.translation,
        risk_assessment=record.risk_assessment,
        research_results=record.research_results,
        completed_steps=[
            step for step, outcome in record.step_results.items()
            if outcome.success
        ],
    )


@function_tool
async def get_pipeline_context(ctx: RunContextWrapper[StepContext]) -> str:
    """Get the patient identifiers, transcript and results of earlier steps.

    Returns:
        JSON string with the current pipeline context.
    """
    return describe_pipeline_context(ctx.context).model_dump_json(exclude_none=True)
