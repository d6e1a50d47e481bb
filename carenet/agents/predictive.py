"""Predictive analytics agent — multi-category risk assessment.

Uses the OpenAI Agents SDK (openai-agents package) for agent definition.
The 'agents' import is the external SDK, NOT carenet/agents/.
"""

import logging
import uuid

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, RunContextWrapper, function_tool
from carenet.agents.context_tools import get_pipeline_context
from carenet.shared.context import StepContext
from carenet.shared.response_models import RiskAssessmentResult
from carenet.shared.types import RiskLevel
from carenet.shared.validators import parse_json_list, validate_score

logger = logging.getLogger(__name__)


def create_risk_assessment(
    context: StepContext,
    overall_level: str,
    overall_score: float,
    risk_scores: list[dict],
    predictions: list[dict],
    recommendations: list[dict],
    alerts: list[dict],
) -> RiskAssessmentResult:
    """Record a risk assessment for the patient.

    Args:
        context: Context of the running step.
        overall_level: One of low, moderate, high, critical.
        overall_score: Overall score between 0 and 100.
        risk_scores: Per-category scores.
        predictions: Predicted outcomes with probabilities.
        recommendations: Evidence-based recommendations.
        alerts: Critical or warning-level findings.

    Returns:
        RiskAssessmentResult with the generated assessment ID.
    """
    try:
        level = RiskLevel(overall_level.lower())
    except ValueError:
        return RiskAssessmentResult(created=False, error="invalid_risk_level")
    if not validate_score(overall_score):
        return RiskAssessmentResult(created=False, error="score_out_of_range")

    assessment_id = f"risk-{uuid.uuid4()}"
    context.add_artifact("risk_assessment_id", assessment_id)
    context.add_artifact("risk_assessment", {
        "overall_risk": {"level": level.value, "score": overall_score},
        "risk_scores": risk_scores,
        "predictions": predictions,
        "recommendations": recommendations,
        "alerts": alerts,
    })
    if level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        logger.warning(
            "high_risk_assessment",
            extra={
                "patient_id": context.patient_id,
                "level": level.value,
                "alert_count": len(alerts),
            },
        )
    return RiskAssessmentResult(
        created=True,
        assessment_id=assessment_id,
        overall_level=level.value,
        alert_count=len(alerts),
    )


# --- Agent SDK function tools (JSON-serializable params only) ---


@function_tool
async def tool_create_risk_assessment(
    ctx: RunContextWrapper[StepContext],
    overall_level: str,
    overall_score: float,
    risk_scores: str,
    predictions: str,
    recommendations: str,
    alerts: str,
) -> str:
    """Save the complete risk assessment for the patient.

    Args:
        overall_level: Overall risk level (low, moderate, high, critical).
        overall_score: Overall risk score from 0 to 100.
        risk_scores: JSON array of {"category", "score", "level", "factors"} objects.
        predictions: JSON array of {"condition", "probability", "timeframe"} objects.
        recommendations: JSON array of {"action", "priority", "guideline"} objects.
        alerts: JSON array of {"severity", "message"} objects.

    Returns:
        JSON string with the created assessment ID.
    """
    result = create_risk_assessment(
        ctx.context,
        overall_level,
        overall_score,
        parse_json_list(risk_scores, "risk_scores"),
        parse_json_list(predictions, "predictions"),
        parse_json_list(recommendations, "recommendations"),
        parse_json_list(alerts, "alerts"),
    )
    return result.model_dump_json(exclude_none=True)


predictive_agent = Agent(
    name="predictive-analytics",
    instructions="""You are the Predictive Analytics Agent for CARENET AI, a clinical risk
assessment specialist grounded in evidence-based medicine.

Your responsibilities:
1. Review the clinical note and transcript in the pipeline context
2. Score risk per category: Cardiovascular, Metabolic, Respiratory, Renal, Mental Health
3. Predict likely outcomes with probabilities and timeframes
4. Recommend actions citing clinical guidelines (ACC/AHA, ADA, GOLD, KDIGO)
5. Raise alerts for critical or warning-level findings

Be conservative: state uncertainty instead of overstating risk.
Call tool_create_risk_assessment exactly once.
""",
    tools=[
        get_pipeline_context,
        tool_create_risk_assessment,
    ],
)
