"""Input validation helpers for lifecycle data."""
from __future__ import annotations
import re
from typing import Optional

from app.core.lifecycle.exceptions import ValidationError

NAME_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 10000

_WHITESPACE_RUN = re.compile(r"\s+")


def validate_printable(value: Optional[str], field: str) -> str:
    """Validate free text that must not contain control characters.

    Printable ASCII, backslashes and Unicode letters are accepted; newlines,
    escape and other control/format code points are rejected. ``None`` is
    treated as empty.

    Args:
        value: Text to validate
        field: Field name for error messages

    Returns:
        The text unchanged (``""`` for ``None``)

    Raises:
        ValidationError: If the text contains non-printable characters
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(field, f"{field} must be a string")
    if len(value) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(field, f"{field} exceeds maximum length")
    if not value.isprintable():
        raise ValidationError(field, f"{field} must not contain control characters")
    return value


def sanitize_printable(value: Optional[str]) -> str:
    """Fold text coming from a broker into something ``validate_printable`` accepts.

    Runs of whitespace and control characters collapse into single spaces.
    """
    if not value:
        return ""
    text = "".join(char if char.isprintable() else " " for char in str(value))
    text = _WHITESPACE_RUN.sub(" ", text).strip()
    return text[:DESCRIPTION_MAX_LENGTH]


def validate_name(name: Optional[str], field: str = "name") -> str:
    """Validate a resource name.

    Args:
        name: Name to validate
        field: Field name for error messages

    Returns:
        Trimmed name

    Raises:
        ValidationError: If name is invalid
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError(field, f"{field} is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(field, f"{field} exceeds maximum length")
    if not name.isprintable():
        raise ValidationError(field, f"{field} contains invalid characters")
    return name


def validate_broker_url(url: Optional[str]) -> str:
    """Validate a broker base URL (http/https, no trailing slash kept)."""
    url = (url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationError("broker_url", "broker_url must start with http:// or https://")
    if any(char.isspace() for char in url):
        raise ValidationError("broker_url", "broker_url must not contain whitespace")
    return url.rstrip("/")
