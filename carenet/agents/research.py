"""Research synthesis agent — literature summary for the patient's conditions.

Uses the OpenAI Agents SDK (openai-agents package) for agent definition.
The 'agents' import is the external SDK, NOT carenet/agents/.
"""

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, RunContextWrapper, function_tool
from carenet.agents.context_tools import get_pipeline_context
from carenet.shared.context import StepContext
from carenet.shared.response_models import ResearchSynthesisResult
from carenet.shared.validators import parse_json_list, parse_json_object


def save_research_synthesis(
    context: StepContext,
    papers_analyzed: int,
    search_queries: list[str],
    synthesis: dict,
    relevant_paper_ids: list[str] | None = None,
) -> ResearchSynthesisResult:
    """Record the research synthesis for this pipeline.

    A synthesis over zero papers is still a valid result.

    Args:
        context: Context of the running step.
        papers_analyzed: Number of papers reviewed.
        search_queries: Queries used to find the papers.
        synthesis: Findings, contradictions, evidence and gaps.
        relevant_paper_ids: Identifiers of the most relevant papers.

    Returns:
        ResearchSynthesisResult confirming the save.
    """
    if papers_analyzed < 0:
        return ResearchSynthesisResult(saved=False, error="invalid_paper_count")

    context.add_artifact("research_results", {
        "papers_analyzed": papers_analyzed,
        "search_queries": search_queries,
        "synthesis": synthesis,
        "relevant_paper_ids": relevant_paper_ids or [],
    })
    return ResearchSynthesisResult(saved=True, papers_analyzed=papers_analyzed)


# --- Agent SDK function tools (JSON-serializable params only) ---


@function_tool
async def tool_save_research_synthesis(
    ctx: RunContextWrapper[StepContext],
    papers_analyzed: int,
    search_queries: str,
    synthesis: str,
    relevant_paper_ids: str,
) -> str:
    """Save the research synthesis for the patient's conditions.

    Args:
        papers_analyzed: Number of papers reviewed.
        search_queries: JSON array of search query strings.
        synthesis: JSON object with "common_findings", "contradictions",
            "treatment_evidence", "research_gaps", "clinical_implications".
        relevant_paper_ids: JSON array of paper identifiers (DOI or PMID).

    Returns:
        JSON string with save confirmation.
    """
    result = save_research_synthesis(
        ctx.context,
        papers_analyzed,
        parse_json_list(search_queries, "search_queries"),
        parse_json_object(synthesis, "synthesis"),
        parse_json_list(relevant_paper_ids, "relevant_paper_ids"),
    )
    return result.model_dump_json(exclude_none=True)


research_agent = Agent(
    name="research-synthesis",
    instructions="""You are the Research Synthesis Agent for CARENET AI.

Your responsibilities:
1. Identify the patient's conditions from the pipeline context
2. Formulate focused literature queries for those conditions
3. Compare findings across papers and note contradictions
4. Grade the evidence for current and proposed treatments
5. Highlight research gaps and clinical implications for this patient

Cite identifiers (DOI or PMID) only when you are certain of them.
Call tool_save_research_synthesis exactly once, even if no papers qualify.
""",
    tools=[
        get_pipeline_context,
        tool_save_research_synthesis,
    ],
)
