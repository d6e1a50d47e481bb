"""Medical translator agent — clinical note to patient-friendly language.

Uses the OpenAI Agents SDK (openai-agents package) for agent definition.
The 'agents' import is the external SDK, NOT carenet/agents/.
"""

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, RunContextWrapper, function_tool
from carenet.agents.context_tools import get_pipeline_context
from carenet.shared.context import StepContext
from carenet.shared.response_models import TranslationResult
from carenet.shared.validators import parse_json_list


def save_translation(
    context: StepContext,
    simplified_summary: str,
    diagnosis_explanations: list[dict],
    medication_guides: list[dict],
    risk_warnings: list[str] | None = None,
    lifestyle_recommendations: list[str] | None = None,
    follow_up_instructions: str = "",
) -> TranslationResult:
    """Record the patient-friendly translation of the clinical note.

    Args:
        context: Context of the running step.
        simplified_summary: Plain-language visit summary.
        diagnosis_explanations: Per-diagnosis explanations.
        medication_guides: Per-medication usage guides.
        risk_warnings: Warning signs the patient should watch for.
        lifestyle_recommendations: Lifestyle advice.
        follow_up_instructions: What the patient should do next.

    Returns:
        TranslationResult confirming the save.
    """
    if not simplified_summary.strip():
        return TranslationResult(saved=False, error="summary_required")

    note_id = context.record.clinical_note_id
    context.add_artifact("translation", {
        "note_id": note_id,
        "simplified_summary": simplified_summary,
        "diagnosis_explanations": diagnosis_explanations,
        "medication_guides": medication_guides,
        "risk_warnings": risk_warnings or [],
        "lifestyle_recommendations": lifestyle_recommendations or [],
        "follow_up_instructions": follow_up_instructions,
    })
    return TranslationResult(saved=True, note_id=note_id)


# --- Agent SDK function tools (JSON-serializable params only) ---


@function_tool
async def tool_save_translation(
    ctx: RunContextWrapper[StepContext],
    simplified_summary: str,
    diagnosis_explanations: str,
    medication_guides: str,
    risk_warnings: str,
    lifestyle_recommendations: str,
    follow_up_instructions: str,
) -> str:
    """Save the patient-friendly translation of the clinical note.

    Args:
        simplified_summary: Plain-language summary of the visit.
        diagnosis_explanations: JSON array of {"diagnosis", "explanation"} objects.
        medication_guides: JSON array of {"medication", "purpose", "how_to_take"} objects.
        risk_warnings: JSON array of warning strings.
        lifestyle_recommendations: JSON array of recommendation strings.
        follow_up_instructions: Next steps for the patient.

    Returns:
        JSON string with save confirmation.
    """
    result = save_translation(
        ctx.context,
        simplified_summary,
        parse_json_list(diagnosis_explanations, "diagnosis_explanations"),
        parse_json_list(medication_guides, "medication_guides"),
        parse_json_list(risk_warnings, "risk_warnings"),
        parse_json_list(lifestyle_recommendations, "lifestyle_recommendations"),
        follow_up_instructions,
    )
    return result.model_dump_json(exclude_none=True)


translator_agent = Agent(
    name="medical-translator",
    instructions="""You are the Medical Translator Agent for CARENET AI.

You turn clinical documentation into language a patient with no medical
training can understand (target: 6th-grade reading level).

Your responsibilities:
1. Retrieve the clinical note from the pipeline context
2. Explain every diagnosis in plain language
3. Write a guide for each prescribed medication
4. List warning signs that need urgent care
5. Give practical lifestyle recommendations and follow-up instructions

Never add diagnoses or medications that are not in the clinical note.
Call tool_save_translation exactly once.
""",
    tools=[
        get_pipeline_context,
        tool_save_translation,
    ],
)
