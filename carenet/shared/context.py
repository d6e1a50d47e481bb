"""Run context handed to step executors and their tools."""

from dataclasses import dataclass, field
from typing import Any

from carenet.shared.response_models import PipelineRecord, ToolCallRecord


@dataclass
class StepContext:
    """Context for one step execution.

    Tools read the pipeline record and write the artifacts they
    produce into ``artifacts``; the executor returns them as part of
    the step outcome.

    Attributes:
        patient_id: Patient the pipeline concerns.
        provider_id: Provider who requested the run.
        record: Pipeline record as of the start of the step.
        artifacts: Named outputs collected from tool calls.
        tool_calls: Tools invoked so far, in call order.
    """

    patient_id: str
    provider_id: str
    record: PipelineRecord
    artifacts: dict[str, Any] = field(default_factory=dict)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)

    def add_artifact(self, key: str, value: Any) -> None:
        """Set a scalar artifact, replacing any earlier value."""
        self.artifacts[key] = value

    def append_artifact(self, key: str, item: dict[str, Any]) -> None:
        """Append an item to a list artifact, creating it if needed."""
        self.artifacts.setdefault(key, []).append(item)
