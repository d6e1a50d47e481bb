"""Clinical documentation agent — transcript to structured SOAP note.

Uses the OpenAI Agents SDK (openai-agents package) for agent definition.
The 'agents' import is the external SDK, NOT carenet/agents/.

This is the critical step of the default pipeline: every later step
builds its instruction from the note this agent produces.
"""

import logging
import uuid

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, RunContextWrapper, function_tool
from carenet.agents.context_tools import get_pipeline_context
from carenet.shared.context import StepContext
from carenet.shared.response_models import ClinicalNoteResult
from carenet.shared.validators import parse_json_list

logger = logging.getLogger(__name__)


def create_clinical_note(
    context: StepContext,
    chief_complaint: str,
    assessment: list[dict],
    plan: str,
    prescriptions: list[dict] | None = None,
    extracted_entities: list[dict] | None = None,
) -> ClinicalNoteResult:
    """Create a clinical note and record it as the step's document.

    Args:
        context: Context of the running step.
        chief_complaint: Reason for the encounter.
        assessment: Diagnoses with diagnosis, icd_code, severity keys.
        plan: Treatment plan text.
        prescriptions: Prescribed medications.
        extracted_entities: Medical entities found in the transcript.

    Returns:
        ClinicalNoteResult with the generated note ID.
    """
    if not chief_complaint.strip():
        return ClinicalNoteResult(created=False, error="chief_complaint_required")

    note_id = f"note-{uuid.uuid4()}"
    context.add_artifact("clinical_note_id", note_id)
    context.add_artifact("clinical_note", {
        "chief_complaint": chief_complaint,
        "assessment": assessment,
        "plan": plan,
        "prescriptions": prescriptions or [],
        "extracted_entities": extracted_entities or [],
    })
    logger.info(
        "clinical_note_created",
        extra={"patient_id": context.patient_id, "note_id": note_id},
    )
    return ClinicalNoteResult(created=True, note_id=note_id)


# --- Agent SDK function tools (JSON-serializable params only) ---


@function_tool
async def tool_create_clinical_note(
    ctx: RunContextWrapper[StepContext],
    chief_complaint: str,
    assessment: str,
    plan: str,
    prescriptions: str,
    extracted_entities: str,
) -> str:
    """Create a structured SOAP clinical note for the encounter.

    Args:
        chief_complaint: Reason for the encounter in the patient's words.
        assessment: JSON array of {"diagnosis", "icd_code", "severity"} objects.
        plan: Treatment plan.
        prescriptions: JSON array of {"medication", "dosage", "frequency"} objects.
        extracted_entities: JSON array of {"type", "value"} medical entities.

    Returns:
        JSON string with the created note ID.
    """
    result = create_clinical_note(
        ctx.context,
        chief_complaint,
        parse_json_list(assessment, "assessment"),
        plan,
        parse_json_list(prescriptions, "prescriptions"),
        parse_json_list(extracted_entities, "extracted_entities"),
    )
    return result.model_dump_json(exclude_none=True)


clinical_documentation_agent = Agent(
    name="clinical-documentation",
    instructions="""You are the Clinical Documentation Agent for CARENET AI, an expert medical scribe.

Your responsibilities:
1. Read the encounter transcript carefully
2. Extract medical entities: symptoms, conditions, medications, allergies, vitals
3. Assign ICD-10 codes to each diagnosis with a severity
4. Write a SOAP-structured note: chief complaint, assessment, plan, prescriptions
5. Flag potential drug interactions in the plan

You MUST call tool_create_clinical_note exactly once. Never invent findings
that are not supported by the transcript.
""",
    tools=[
        get_pipeline_context,
        tool_create_clinical_note,
    ],
)
