"""Input validation for SnipSync.

This module provides the primitive validators used to turn incoming JSON
values into typed fields. All validators raise ValidationError with a
descriptive message; none of them coerce a value of the wrong type.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

__all__ = [
    "ValidationError",
    "require_object",
    "require_list",
    "require_str",
    "optional_str",
    "require_bool",
    "require_timestamp",
    "optional_timestamp",
    "optional_int",
    "optional_flag",
    "require_local_id",
    "validate_record_id",
]

MAX_ID_LENGTH = 64
MAX_NAME_LENGTH = 255


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def _is_int(value: Any) -> bool:
    # bool is a subclass of int but never a valid number on the wire
    return isinstance(value, int) and not isinstance(value, bool)


def require_object(value: Any, field: str) -> Dict[str, Any]:
    """Validate a JSON object."""
    if not isinstance(value, dict):
        raise ValidationError(field, f"must be an object, got {_type_name(value)}")
    return value


def require_list(value: Any, field: str) -> List[Any]:
    """Validate a JSON array. A missing (None) array is treated as empty."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(field, f"must be a list, got {_type_name(value)}")
    return value


def require_str(value: Any, field: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Validate a required string."""
    if not isinstance(value, str):
        raise ValidationError(field, f"must be a string, got {_type_name(value)}")
    if max_length and len(value) > max_length:
        raise ValidationError(
            field, f"cannot exceed {max_length} characters (got {len(value)})"
        )
    return value


def optional_str(value: Any, field: str, max_length: int = 0) -> Optional[str]:
    """Validate an optional (nullable) string. max_length=0 means unbounded."""
    if value is None:
        return None
    return require_str(value, field, max_length)


def require_bool(value: Any, field: str) -> bool:
    """Validate a JSON boolean."""
    if not isinstance(value, bool):
        raise ValidationError(field, f"must be a boolean, got {_type_name(value)}")
    return value


def require_timestamp(value: Any, field: str) -> int:
    """Validate a millisecond timestamp.

    JSON clients written in JavaScript may send integral floats such as
    1700000000000.0; those are accepted, fractional values are not.
    """
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not _is_int(value):
        raise ValidationError(field, f"must be an integer timestamp, got {_type_name(value)}")
    if value < 0:
        raise ValidationError(field, f"must not be negative (got {value})")
    return value


def optional_timestamp(value: Any, field: str) -> Optional[int]:
    """Validate an optional millisecond timestamp."""
    if value is None:
        return None
    return require_timestamp(value, field)


def optional_int(value: Any, field: str, default: int = 0) -> int:
    """Validate an optional integer, returning default when absent."""
    if value is None:
        return default
    if not _is_int(value):
        raise ValidationError(field, f"must be an integer, got {_type_name(value)}")
    return value


def optional_flag(value: Any, field: str) -> int:
    """Validate a 0/1 flag. Booleans are accepted and stored as integers."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if value in (0, 1) and _is_int(value):
        return value
    raise ValidationError(field, f"must be 0, 1 or a boolean, got {value!r}")


def require_local_id(value: Any, field: str = "localId") -> Union[int, str]:
    """Validate a client local reference (integer or opaque token)."""
    if _is_int(value):
        return value
    if isinstance(value, str) and value:
        return require_str(value, field, MAX_ID_LENGTH)
    raise ValidationError(field, f"must be an integer or non-empty string, got {_type_name(value)}")


def validate_record_id(value: Any, field: str = "id") -> str:
    """Validate a permanent record ID reference."""
    record_id = require_str(value, field, MAX_ID_LENGTH * 2 + 1)
    if not record_id.strip():
        raise ValidationError(field, "cannot be empty")
    return record_id
