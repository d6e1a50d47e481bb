"""Workflow automation agent — follow-up scheduling, claims, lab orders.

Uses the OpenAI Agents SDK (openai-agents package) for agent definition.
The 'agents' import is the external SDK, NOT carenet/agents/.

Every creation helper appends to a list artifact; the pipeline merges
those lists into the record without touching earlier entries.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, RunContextWrapper, function_tool
from carenet.agents.context_tools import get_pipeline_context
from carenet.shared.context import StepContext
from carenet.shared.response_models import (
    AppointmentResult,
    InsuranceClaimResult,
    LabOrderResult,
)
from carenet.shared.types import LabPriority
from carenet.shared.validators import parse_json_list

logger = logging.getLogger(__name__)

APPOINTMENT_TYPES = frozenset({
    "checkup",
    "follow_up",
    "consultation",
    "procedure",
    "emergency",
    "lab_review",
})
VALID_DURATIONS_MINUTES = (15, 30, 45, 60)


def _parse_datetime(value: str) -> datetime:
    """Parse an ISO datetime, assuming UTC when no offset is given."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _find_conflict(
    context: StepContext,
    start: datetime,
    end: datetime,
) -> dict | None:
    """Find an appointment in this pipeline overlapping [start, end).

    Args:
        context: Context of the running step.
        start: Proposed start time.
        end: Proposed end time.

    Returns:
        The overlapping appointment dict, or None.
    """
    existing = [
        *context.record.appointments,
        *context.artifacts.get("appointments", []),
    ]
    for appointment in existing:
        other_start = _parse_datetime(appointment["date"])
        other_end = other_start + timedelta(
            minutes=appointment.get("duration_minutes", 30),
        )
        if other_start < end and start < other_end:
            return appointment
    return None


def create_appointment(
    context: StepContext,
    scheduled_date: str,
    duration_minutes: int,
    appointment_type: str,
    reason: str,
) -> AppointmentResult:
    """Schedule a follow-up appointment, rejecting overlapping slots.

    Args:
        context: Context of the running step.
        scheduled_date: ISO datetime of the appointment.
        duration_minutes: Length of the visit (15, 30, 45 or 60).
        appointment_type: Appointment type.
        reason: Reason for the visit.

    Returns:
        AppointmentResult with the appointment ID or an error.
    """
    if appointment_type not in APPOINTMENT_TYPES:
        return AppointmentResult(created=False, error="invalid_appointment_type")
    if duration_minutes not in VALID_DURATIONS_MINUTES:
        return AppointmentResult(created=False, error="invalid_duration")
    try:
        start = _parse_datetime(scheduled_date)
    except ValueError:
        return AppointmentResult(created=False, error="invalid_date")

    end = start + timedelta(minutes=duration_minutes)
    conflict = _find_conflict(context, start, end)
    if conflict is not None:
        return AppointmentResult(
            created=False,
            error=f"scheduling_conflict:{conflict['date']}",
        )

    appointment_id = f"appt-{uuid.uuid4()}"
    context.append_artifact("appointments", {
        "id": appointment_id,
        "date": start.isoformat(),
        "duration_minutes": duration_minutes,
        "type": appointment_type,
        "reason": reason,
    })
    logger.info(
        "appointment_created",
        extra={"patient_id": context.patient_id, "appointment_id": appointment_id},
    )
    return AppointmentResult(
        created=True,
        appointment_id=appointment_id,
        scheduled_at=start.isoformat(),
    )


def create_insurance_claim(
    context: StepContext,
    diagnosis_codes: list[str],
    procedure_codes: list[str],
    total_amount: float,
) -> InsuranceClaimResult:
    """Draft an insurance claim for the encounter.

    Args:
        context: Context of the running step.
        diagnosis_codes: ICD-10 codes from the clinical note.
        procedure_codes: CPT codes for the services rendered.
        total_amount: Billed amount.

    Returns:
        InsuranceClaimResult with the claim ID and number.
    """
    if not diagnosis_codes:
        return InsuranceClaimResult(created=False, error="diagnosis_codes_required")
    if total_amount < 0:
        return InsuranceClaimResult(created=False, error="invalid_amount")

    claim_id = f"claim-{uuid.uuid4()}"
    claim_number = f"CLM-{datetime.now(UTC):%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"
    context.append_artifact("insurance_claims", {
        "id": claim_id,
        "claim_number": claim_number,
        "amount": total_amount,
        "status": "draft",
        "diagnosis_codes": diagnosis_codes,
        "procedure_codes": procedure_codes,
    })
    return InsuranceClaimResult(
        created=True,
        claim_id=claim_id,
        claim_number=claim_number,
    )


def create_lab_order(
    context: StepContext,
    test_name: str,
    priority: str,
    reason: str,
) -> LabOrderResult:
    """Order a lab test in "ordered" status.

    Args:
        context: Context of the running step.
        test_name: Name of the lab test.
        priority: routine, urgent or stat.
        reason: Clinical justification.

    Returns:
        LabOrderResult with the order ID.
    """
    try:
        level = LabPriority(priority.lower())
    except ValueError:
        return LabOrderResult(created=False, error="invalid_priority")

    order_id = f"lab-{uuid.uuid4()}"
    context.append_artifact("lab_orders", {
        "id": order_id,
        "test": test_name,
        "priority": level.value,
        "reason": reason,
        "status": "ordered",
    })
    return LabOrderResult(created=True, order_id=order_id)


# --- Agent SDK function tools (JSON-serializable params only) ---


@function_tool
async def tool_create_appointment(
    ctx: RunContextWrapper[StepContext],
    scheduled_date: str,
    duration_minutes: int,
    appointment_type: str,
    reason: str,
) -> str:
    """Schedule a follow-up appointment for the patient.

    Args:
        scheduled_date: ISO datetime for the appointment.
        duration_minutes: Duration in minutes (15, 30, 45, 60).
        appointment_type: checkup, follow_up, consultation, procedure, emergency or lab_review.
        reason: Reason for the appointment.

    Returns:
        JSON string with the appointment ID or a conflict error.
    """
    result = create_appointment(
        ctx.context, scheduled_date, duration_minutes, appointment_type, reason,
    )
    return result.model_dump_json(exclude_none=True)


@function_tool
async def tool_create_insurance_claim(
    ctx: RunContextWrapper[StepContext],
    diagnosis_codes: str,
    procedure_codes: str,
    total_amount: float,
) -> str:
    """Draft an insurance claim using codes from the clinical note.

    Args:
        diagnosis_codes: JSON array of ICD-10 code strings.
        procedure_codes: JSON array of CPT code strings.
        total_amount: Billed amount in USD.

    Returns:
        JSON string with the claim number.
    """
    result = create_insurance_claim(
        ctx.context,
        parse_json_list(diagnosis_codes, "diagnosis_codes"),
        parse_json_list(procedure_codes, "procedure_codes"),
        total_amount,
    )
    return result.model_dump_json(exclude_none=True)


@function_tool
async def tool_create_lab_order(
    ctx: RunContextWrapper[StepContext],
    test_name: str,
    priority: str,
    reason: str,
) -> str:
    """Order a lab test for the patient.

    Args:
        test_name: Lab test name (e.g. HbA1c, lipid panel).
        priority: routine, urgent or stat.
        reason: Clinical justification for the order.

    Returns:
        JSON string with the order ID.
    """
    result = create_lab_order(ctx.context, test_name, priority, reason)
    return result.model_dump_json(exclude_none=True)


workflow_agent = Agent(
    name="workflow-automation",
    instructions="""You are the Workflow Automation Agent for CARENET AI.

Your responsibilities:
1. Create a follow-up appointment whose urgency matches the risk level
   (critical: within 2 days, high: within 1 week, otherwise 2-4 weeks)
2. Draft an insurance claim with the ICD-10 codes from the clinical note
3. Order the lab tests recommended by the risk assessment

If an appointment conflicts, pick the next free slot and retry once.
Only create actions supported by the clinical context.
""",
    tools=[
        get_pipeline_context,
        tool_create_appointment,
        tool_create_insurance_claim,
        tool_create_lab_order,
    ],
)
