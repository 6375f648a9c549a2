"""Input validation helpers shared by the HTTP and WebSocket layers."""

import re
from typing import Any, Optional
from uuid import UUID

from veridicus.core.exceptions import ValidationError

UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

SEVERITY_LEVELS = ("low", "medium", "high", "critical")
DEFAULT_SEVERITY = "medium"


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_REGEX.match(value))


def parse_uuid(value: Any, label: str = "ID") -> UUID:
    """Validate a path/query id and convert it to ``UUID``.

    Raises:
        ValidationError: If the value does not have the canonical UUID shape
    """
    if not is_valid_uuid(value):
        raise ValidationError(f"Invalid {label} format")
    return UUID(value)


def optional_uuid(value: Any) -> Optional[UUID]:
    """Return the value as ``UUID`` when it is a well-formed id, else None."""
    if isinstance(value, UUID):
        return value
    return UUID(value) if is_valid_uuid(value) else None


def is_valid_severity(value: Any) -> bool:
    return value in SEVERITY_LEVELS


def normalize_severity(value: Any) -> str:
    return value if is_valid_severity(value) else DEFAULT_SEVERITY
