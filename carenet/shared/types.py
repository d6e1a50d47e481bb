"""Shared types, enums, and constants used across the application."""

import enum


class AgentStep(str, enum.Enum):
    """Named steps of the encounter pipeline."""

    CLINICAL_DOCUMENTATION = "clinical-documentation"
    MEDICAL_TRANSLATOR = "medical-translator"
    PREDICTIVE_ANALYTICS = "predictive-analytics"
    RESEARCH_SYNTHESIS = "research-synthesis"
    WORKFLOW_AUTOMATION = "workflow-automation"


# Later steps build their instructions from fields earlier steps produce.
AGENT_STEP_ORDER: list[AgentStep] = [
    AgentStep.CLINICAL_DOCUMENTATION,
    AgentStep.MEDICAL_TRANSLATOR,
    AgentStep.PREDICTIVE_ANALYTICS,
    AgentStep.RESEARCH_SYNTHESIS,
    AgentStep.WORKFLOW_AUTOMATION,
]


class PipelineStatus(str, enum.Enum):
    """Pipeline run lifecycle state."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineEventType(str, enum.Enum):
    """Progress events emitted while a pipeline runs."""

    PIPELINE_STARTED = "PIPELINE_STARTED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_FAILED = "STEP_FAILED"
    PIPELINE_ABORTED = "PIPELINE_ABORTED"
    PIPELINE_FINISHED = "PIPELINE_FINISHED"


class RiskLevel(str, enum.Enum):
    """Overall risk level reported by the predictive step."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class LabPriority(str, enum.Enum):
    """Lab order urgency."""

    ROUTINE = "routine"
    URGENT = "urgent"
    STAT = "stat"
