"""Step executor backed by the OpenAI Agents SDK.

Runs the agent assigned to a pipeline step and converts the SDK run
result into a StepOutcome: final output text, the artifacts the
agent's tools recorded, tool call records and telemetry.

Runs are plain coroutines, so cancelling the awaiting task (as the
step runner does on timeout) stops the agent loop at its next await.
"""

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

# agents is the OpenAI Agents SDK package (openai-agents), NOT carenet/agents/
from agents import Agent, MaxTurnsExceeded, Runner, ToolCallItem, ToolCallOutputItem
from carenet.shared.context import StepContext
from carenet.shared.response_models import StepOutcome, StepTelemetry, ToolCallRecord
from carenet.shared.types import AgentStep

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 8
TOOL_FAILURE_PREFIX = "An error occurred while running the tool"


def collect_tool_calls(items: list[Any]) -> list[ToolCallRecord]:
    """Extract tool call records from SDK run items.

    Each call is paired with its output item by call ID. A call is
    unsuccessful when the SDK reports the tool raised, or when the tool
    returned a JSON result carrying an ``error``.

    Args:
        items: ``RunResult.new_items`` from a completed run.

    Returns:
        One ToolCallRecord per tool call, in call order.
    """
    calls: list[ToolCallRecord] = []
    by_call_id: dict[str, ToolCallRecord] = {}
    for item in items:
        if isinstance(item, ToolCallItem):
            raw = item.raw_item
            record = ToolCallRecord(
                tool_name=getattr(raw, "name", None) or type(raw).__name__,
                call_id=getattr(raw, "call_id", None),
            )
            calls.append(record)
            if record.call_id:
                by_call_id[record.call_id] = record
        elif isinstance(item, ToolCallOutputItem):
            record = by_call_id.get(_output_call_id(item.raw_item))
            if record is None:
                continue
            error = tool_output_error(item.output)
            if error:
                record.success = False
                record.error = error
    return calls


def tool_output_error(output: Any) -> str | None:
    """Error text carried by a tool output, or None for a clean result.

    Args:
        output: Tool return value as recorded by the SDK.

    Returns:
        The error text, if the output reports one.
    """
    if isinstance(output, str):
        if output.startswith(TOOL_FAILURE_PREFIX):
            return output
        try:
            output = json.loads(output)
        except ValueError:
            return None
    if isinstance(output, dict) and output.get("error"):
        return str(output["error"])
    return None


def _output_call_id(raw: Any) -> str | None:
    """Call ID of a tool output item's raw payload."""
    if isinstance(raw, dict):
        return raw.get("call_id")
    return getattr(raw, "call_id", None)


class AgentStepExecutor:
    """Executes pipeline steps with their assigned agents.

    Args:
        agents: Step-to-agent table, usually from build_step_agents().
        max_turns: Maximum agent loop turns per step.
    """

    def __init__(
        self,
        agents: Mapping[AgentStep, Agent],
        max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self._agents = dict(agents)
        self._max_turns = max_turns

    async def execute(
        self,
        step: AgentStep,
        instruction: str,
        context: StepContext,
    ) -> StepOutcome:
        """Run the agent for ``step`` on the rendered instruction.

        Args:
            step: Pipeline step to execute.
            instruction: Instruction text for the agent.
            context: Step context; tools write artifacts into it.

        Returns:
            StepOutcome describing the run.

        Raises:
            KeyError: If no agent is registered for the step.
        """
        agent = self._agents[AgentStep(step)]
        started = time.monotonic()
        logger.info("agent_run_started", extra={"agent": agent.name})
        try:
            result = await Runner.run(
                agent,
                instruction,
                context=context,
                max_turns=self._max_turns,
            )
        except MaxTurnsExceeded:
            logger.warning(
                "agent_max_turns_exceeded",
                extra={"agent": agent.name, "max_turns": self._max_turns},
            )
            outcome = StepOutcome.failure(
                agent.name,
                f"Agent {agent.name} exceeded maximum turns ({self._max_turns})",
            )
            outcome.telemetry = StepTelemetry(duration_ms=_elapsed_ms(started))
            return outcome

        tool_calls = collect_tool_calls(result.new_items)
        context.tool_calls.extend(tool_calls)
        usage = result.context_wrapper.usage
        telemetry = StepTelemetry(
            duration_ms=_elapsed_ms(started),
            tool_invocations=len(tool_calls),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        logger.info(
            "agent_run_completed",
            extra={
                "agent": agent.name,
                "duration_ms": telemetry.duration_ms,
                "tool_calls": telemetry.tool_invocations,
            },
        )
        return StepOutcome(
            agent_name=agent.name,
            success=True,
            output=str(result.final_output or ""),
            artifacts=dict(context.artifacts),
            telemetry=telemetry,
            tool_calls=tool_calls,
        )


def _elapsed_ms(started: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - started) * 1000)
