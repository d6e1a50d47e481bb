"""Execute one pipeline step against a timeout.

The runner renders the step instruction, starts the executor in its own
task and waits for it for at most ``timeout_ms``. On timeout the task
is cancelled, so the executor is told to stop rather than left running
unobserved, and the step is reported as timed out.

Executor exceptions never escape: they become unsuccessful outcomes
with a sanitized message.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from carenet.shared.context import StepContext
from carenet.shared.response_models import PipelineRecord, StepOutcome
from carenet.shared.step_messages import build_step_message
from carenet.shared.types import AgentStep

logger = logging.getLogger(__name__)

MessageBuilder = Callable[[AgentStep, PipelineRecord], str]


class StepExecutor(Protocol):
    """Anything that can run a step given its instruction and context."""

    async def execute(
        self,
        step: AgentStep,
        instruction: str,
        context: StepContext,
    ) -> StepOutcome:
        """Run one step and report its outcome."""
        ...


def timeout_message(step: str, timeout_ms: int) -> str:
    """Error text recorded for a step that did not settle in time."""
    return f'Step "{step}" timed out after {timeout_ms / 1000:g}s'


def classify_step_exception(step: str, exc: BaseException) -> str:
    """Map an executor exception to the message recorded for the step.

    Timeout messages pass through unchanged; anything else is reduced
    to a generic internal error so no exception detail is exposed.

    Args:
        step: Step that raised.
        exc: The exception raised by the executor.

    Returns:
        Message safe to store and return to callers.
    """
    message = str(exc)
    if "timed out" in message.lower():
        return message
    return f'Step "{step}" encountered an internal error'


class StepRunner:
    """Runs single steps through an executor with timeout racing.

    Args:
        executor: Step executor to invoke.
        message_builder: Renders a step instruction from the record.
    """

    def __init__(
        self,
        executor: StepExecutor,
        message_builder: MessageBuilder = build_step_message,
    ) -> None:
        self._executor = executor
        self._message_builder = message_builder
        self._abandoned: set[asyncio.Task[StepOutcome]] = set()

    @property
    def abandoned_count(self) -> int:
        """Timed-out executor tasks that have not finished cancelling."""
        return len(self._abandoned)

    async def run(
        self,
        step: AgentStep,
        record: PipelineRecord,
        timeout_ms: int,
    ) -> StepOutcome:
        """Execute ``step`` and classify how it settled.

        Args:
            step: Step to execute.
            record: Pipeline record the step reads from.
            timeout_ms: Maximum time to wait for the executor.

        Returns:
            The executor's outcome, or an unsuccessful outcome on
            timeout or exception.
        """
        step_name = AgentStep(step).value
        try:
            instruction = self._message_builder(step, record)
        except Exception as exc:
            logger.exception("step_message_failed", extra={"step": step_name})
            return StepOutcome.failure(step_name, classify_step_exception(step_name, exc))

        context = StepContext(
            patient_id=record.patient_id,
            provider_id=record.provider_id,
            record=record,
        )
        task = asyncio.create_task(
            self._executor.execute(step, instruction, context),
            name=f"step:{step_name}:{record.pipeline_id}",
        )
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            self._abandon(task)
            logger.warning(
                "step_timed_out",
                extra={"step": step_name, "timeout_ms": timeout_ms},
            )
            return StepOutcome.failure(step_name, timeout_message(step_name, timeout_ms))

        if task.cancelled():
            return StepOutcome.failure(
                step_name, f'Step "{step_name}" encountered an internal error',
            )
        exc = task.exception()
        if exc is not None:
            logger.error(
                "step_raised",
                extra={"step": step_name, "error_type": type(exc).__name__},
                exc_info=exc,
            )
            return StepOutcome.failure(step_name, classify_step_exception(step_name, exc))

        outcome = task.result()
        if not outcome.success and not outcome.error:
            outcome = outcome.model_copy(update={"error": outcome.error_message})
        return outcome

    def _abandon(self, task: asyncio.Task[StepOutcome]) -> None:
        """Cancel a timed-out task and keep it referenced until it ends."""
        task.cancel()
        self._abandoned.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task[StepOutcome]) -> None:
        """Drop a finished abandoned task, logging any late failure."""
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "abandoned_step_failed",
                extra={"task": task.get_name(), "error_type": type(exc).__name__},
            )
        else:
            logger.info("abandoned_step_result_discarded", extra={"task": task.get_name()})
