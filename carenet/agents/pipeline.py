"""Agent pipeline assembly — maps pipeline steps to their agents.

This is the assembly module that connects each pipeline step to its
specialized agent. No agent imports from another agent; only this
module references all of them to build the step table the executor
dispatches on.
"""

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent
from carenet.agents.clinical_documentation import clinical_documentation_agent
from carenet.agents.predictive import predictive_agent
from carenet.agents.research import research_agent
from carenet.agents.translator import translator_agent
from carenet.agents.workflow import workflow_agent
from carenet.shared.types import AGENT_STEP_ORDER, AgentStep

STEP_AGENTS: dict[AgentStep, Agent] = {
    AgentStep.CLINICAL_DOCUMENTATION: clinical_documentation_agent,
    AgentStep.MEDICAL_TRANSLATOR: translator_agent,
    AgentStep.PREDICTIVE_ANALYTICS: predictive_agent,
    AgentStep.RESEARCH_SYNTHESIS: research_agent,
    AgentStep.WORKFLOW_AUTOMATION: workflow_agent,
}

AGENT_CATALOG: list[dict[str, object]] = [
    {
        "name": AgentStep.CLINICAL_DOCUMENTATION.value,
        "display_name": "Clinical Documentation Agent",
        "description": (
            "Processes patient transcripts, extracts medical entities and"
            " generates structured SOAP clinical notes."
        ),
        "capabilities": [
            "NLP Entity Extraction",
            "ICD-10 Coding",
            "SOAP Note Generation",
            "Drug Interaction Flagging",
        ],
    },
    {
        "name": AgentStep.MEDICAL_TRANSLATOR.value,
        "display_name": "Medical Translator Agent",
        "description": (
            "Translates clinical documentation into patient-friendly language"
            " with medication guides and lifestyle recommendations."
        ),
        "capabilities": [
            "Medical Jargon Translation",
            "Medication Guides",
            "Risk Warnings",
            "Lifestyle Recommendations",
        ],
    },
    {
        "name": AgentStep.PREDICTIVE_ANALYTICS.value,
        "display_name": "Predictive Analytics Agent",
        "description": (
            "Analyzes patient data for multi-category risk assessment with"
            " evidence-based predictions and recommendations."
        ),
        "capabilities": [
            "Multi-Category Risk Scoring",
            "Predictive Modeling",
            "Evidence-Based Recommendations",
            "Critical Alert Generation",
        ],
    },
    {
        "name": AgentStep.RESEARCH_SYNTHESIS.value,
        "display_name": "Research Synthesis Agent",
        "description": (
            "Synthesizes medical literature relevant to the patient's"
            " conditions with evidence comparison."
        ),
        "capabilities": [
            "Literature Search",
            "Evidence Synthesis",
            "Treatment Evidence Grading",
            "Gap Analysis",
        ],
    },
    {
        "name": AgentStep.WORKFLOW_AUTOMATION.value,
        "display_name": "Workflow Automation Agent",
        "description": (
            "Schedules follow-ups, drafts insurance claims and orders labs"
            " based on the clinical context."
        ),
        "capabilities": [
            "Intelligent Scheduling",
            "Insurance Claim Drafting",
            "Lab Ordering",
            "Conflict Detection",
        ],
    },
]


def build_step_agents(model: str | None = None) -> dict[AgentStep, Agent]:
    """Assemble the step-to-agent table in pipeline order.

    Args:
        model: Model name to run every agent on. None keeps the SDK default.

    Returns:
        Mapping of each pipeline step to its configured agent.
    """
    if model is None:
        return {step: STEP_AGENTS[step] for step in AGENT_STEP_ORDER}
    return {step: STEP_AGENTS[step].clone(model=model) for step in AGENT_STEP_ORDER}
