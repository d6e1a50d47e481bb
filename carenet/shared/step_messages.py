"""Step instruction template loading and rendering."""

from pathlib import Path
from typing import Any

import yaml
from jinja2 import Template

from carenet.shared.response_models import PipelineRecord
from carenet.shared.types import AgentStep

_TEMPLATES_DIR = Path(__file__).parent.parent / "step_templates"


def load_step_template(step: AgentStep | str) -> dict[str, Any]:
    """Load the instruction template for a pipeline step.

    Args:
        step: Step whose template to load.

    Returns:
        Parsed template dict with name, step, body fields.

    Raises:
        FileNotFoundError: If template file does not exist.
    """
    step_name = AgentStep(step).value if isinstance(step, AgentStep) else step
    path = _TEMPLATES_DIR / f"{step_name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Template not found: {step_name}")
    with open(path) as f:
        return yaml.safe_load(f)


def build_step_message(step: AgentStep | str, record: PipelineRecord) -> str:
    """Render the instruction for a step from the current record.

    Args:
        step: Step about to run.
        record: Pipeline record with the state produced so far.

    Returns:
        Rendered instruction text.
    """
    data = load_step_template(step)
    template = Template(data["body"], trim_blocks=True, lstrip_blocks=True)
    return template.render(**record.model_dump(mode="json")).strip()


def list_step_templates() -> list[str]:
    """List all available step template names.

    Returns:
        List of step names that have a template.
    """
    return sorted(p.stem for p in _TEMPLATES_DIR.glob("*.yaml"))
