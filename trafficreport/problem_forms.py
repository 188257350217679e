from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional

from trafficreport.constants import (
    PRIORITY_DEFAULT,
    PRIORITY_LABELS,
    STATUS_DEFAULT,
    STATUS_FILTER_ALL,
    STATUS_LABELS,
)
from trafficreport.errors import ValidationError

# JSON key -> column for the free-text fields.
REQUIRED_TEXT_FIELDS = [
    ("title", "title", "Title is required."),
    ("problemType", "problem_type", "Problem type is required."),
]
OPTIONAL_TEXT_FIELDS = [
    ("description", "description"),
    ("proposedSolution", "proposed_solution"),
    ("imageUrl", "image_url"),
]
COORDINATE_FIELDS = [
    ("latitude", "latitude", "Latitude must be a finite number."),
    ("longitude", "longitude", "Longitude must be a finite number."),
]


def parse_status_filter(value: Optional[str]) -> Optional[str]:
    """Map the ``status`` query value to a store filter; ``None`` means all."""
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned or cleaned == STATUS_FILTER_ALL:
        return None
    if cleaned not in STATUS_LABELS:
        raise ValidationError("Invalid status.", details={"allowed": [*STATUS_LABELS, STATUS_FILTER_ALL]})
    return cleaned


def parse_coordinate(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _optional_text(value: str) -> Optional[str]:
    cleaned = value.strip()
    return cleaned or None


def _ensure_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _raise_if_errors(errors: List[str]) -> None:
    if errors:
        raise ValidationError(errors[0], details=errors)


def parse_problem_create(payload: Any) -> Dict[str, Any]:
    data = _ensure_mapping(payload)
    errors: List[str] = []
    fields: Dict[str, Any] = {}

    for key, column, message in REQUIRED_TEXT_FIELDS:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(message)
        else:
            fields[column] = value.strip()

    for key, column, message in COORDINATE_FIELDS:
        number = parse_coordinate(data.get(key))
        if number is None:
            errors.append(message)
        else:
            fields[column] = number

    for key, column in OPTIONAL_TEXT_FIELDS:
        value = data.get(key)
        fields[column] = _optional_text(value) if isinstance(value, str) else None

    priority = data.get("priority")
    if isinstance(priority, str) and priority.strip():
        if priority.strip() not in PRIORITY_LABELS:
            errors.append("Invalid priority.")
        fields["priority"] = priority.strip()
    else:
        fields["priority"] = PRIORITY_DEFAULT

    status = data.get("status")
    if isinstance(status, str) and status.strip():
        if status.strip() not in STATUS_LABELS:
            errors.append("Invalid status.")
        fields["status"] = status.strip()
    else:
        fields["status"] = STATUS_DEFAULT

    _raise_if_errors(errors)
    return fields


def parse_problem_update(payload: Any) -> Dict[str, Any]:
    """Build the column changes for a partial update.

    Absent keys, and text keys whose value is not a string, leave the stored
    value alone. ``""`` clears the optional text fields. A coordinate key that
    is present must hold a finite number or the whole update is rejected.
    """
    data = _ensure_mapping(payload)
    errors: List[str] = []
    changes: Dict[str, Any] = {}

    for key, column, message in REQUIRED_TEXT_FIELDS:
        value = data.get(key)
        if not isinstance(value, str):
            continue
        if not value.strip():
            errors.append(message)
        else:
            changes[column] = value.strip()

    for key, column in OPTIONAL_TEXT_FIELDS:
        value = data.get(key)
        if isinstance(value, str):
            changes[column] = _optional_text(value)

    for key, column, message in COORDINATE_FIELDS:
        if key not in data:
            continue
        number = parse_coordinate(data[key])
        if number is None:
            errors.append(message)
        else:
            changes[column] = number

    priority = data.get("priority")
    if isinstance(priority, str):
        if priority.strip() not in PRIORITY_LABELS:
            errors.append("Invalid priority.")
        else:
            changes["priority"] = priority.strip()

    status = data.get("status")
    if isinstance(status, str):
        if status.strip() not in STATUS_LABELS:
            errors.append("Invalid status.")
        else:
            changes["status"] = status.strip()

    _raise_if_errors(errors)
    return changes


__all__ = [
    "parse_coordinate",
    "parse_problem_create",
    "parse_problem_update",
    "parse_status_filter",
]
