"""Fold step artifacts into the pipeline record.

Each artifact key the pipeline understands maps to one merge rule in
MERGE_RULES. Overwrite rules replace a scalar field with a non-empty
value; empty values such as None, "" or {} never clear earlier output.
Append rules extend a list field. Adding a new artifact kind is one
table entry. Unknown keys are ignored.
"""

import logging
from dataclasses import dataclass
from typing import Any

from carenet.shared.response_models import PipelineRecord, StepOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Overwrite:
    """Replace a scalar record field with the artifact value.

    Attributes:
        field: Record field to write.
        requires: Artifact key that must accompany this one, if any.
    """

    field: str
    requires: str | None = None


@dataclass(frozen=True)
class Append:
    """Append every element of a list artifact to a record list field.

    Attributes:
        field: Record list field to extend.
    """

    field: str


MergeRule = Overwrite | Append

MERGE_RULES: dict[str, MergeRule] = {
    "clinical_note_id": Overwrite("clinical_note_id"),
    "clinical_note": Overwrite("clinical_note", requires="clinical_note_id"),
    "translation": Overwrite("translation"),
    "risk_assessment_id": Overwrite("risk_assessment_id"),
    "risk_assessment": Overwrite("risk_assessment", requires="risk_assessment_id"),
    "research_results": Overwrite("research_results"),
    "appointments": Append("appointments"),
    "insurance_claims": Append("insurance_claims"),
    "lab_orders": Append("lab_orders"),
}


def merge_artifacts(
    record: PipelineRecord,
    step: str,
    outcome: StepOutcome,
) -> PipelineRecord:
    """Return a copy of ``record`` with the outcome's artifacts folded in.

    The input record and its lists are left untouched.

    Args:
        record: Current pipeline record.
        step: Step that produced the artifacts.
        outcome: Successful step outcome.

    Returns:
        The merged record (the same object when nothing applies).
    """
    if not outcome.success or not outcome.artifacts:
        return record

    artifacts = outcome.artifacts
    updates: dict[str, Any] = {}
    for key, value in artifacts.items():
        rule = MERGE_RULES.get(key)
        if rule is None:
            logger.debug(
                "artifact_ignored",
                extra={"step": step, "artifact": key},
            )
            continue
        if isinstance(rule, Append):
            current = updates.get(rule.field, getattr(record, rule.field))
            updates[rule.field] = [*current, *_as_list(value)]
        elif value and (rule.requires is None or artifacts.get(rule.requires)):
            updates[rule.field] = value

    if not updates:
        return record
    return record.model_copy(update=updates)


def _as_list(value: Any) -> list[Any]:
    """Normalize an appended artifact value to a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
