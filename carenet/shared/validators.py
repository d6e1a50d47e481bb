"""Shared input validators for agent tool arguments."""

import json
from typing import Any


def parse_json_list(raw: str, field_name: str) -> list[Any]:
    """Parse a JSON array passed to a tool as a string.

    Empty input is treated as an empty list.

    Args:
        raw: JSON text supplied by the model.
        field_name: Argument name used in error messages.

    Returns:
        The decoded list.

    Raises:
        ValueError: If the text is not valid JSON or not an array.
    """
    if not raw or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{field_name} must be valid JSON") from exc
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a JSON array")
    return value


def parse_json_object(raw: str, field_name: str) -> dict[str, Any]:
    """Parse a JSON object passed to a tool as a string.

    Args:
        raw: JSON text supplied by the model.
        field_name: Argument name used in error messages.

    Returns:
        The decoded dict (empty for blank input).

    Raises:
        ValueError: If the text is not valid JSON or not an object.
    """
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{field_name} must be valid JSON") from exc
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be a JSON object")
    return value


def validate_score(score: float) -> bool:
    """Validate a risk score lies in the 0-100 range.

    Args:
        score: Score reported by the model.

    Returns:
        True if 0 <= score <= 100.
    """
    return 0 <= score <= 100
