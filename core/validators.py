"""
Shared validation helpers for MessageVault services.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from core.config import MAX_METADATA_BYTES, MAX_QUERY_LENGTH
from core.errors import ValidationIssue


def validate_present(payload: dict, field: str, label: Optional[str] = None) -> None:
    if field not in payload:
        raise ValidationIssue(
            f"Missing required field: {label or field}",
            field=label or field,
            error_type="required",
        )


def validate_string(value: Any, field: str) -> None:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")


def validate_optional_string(value: Any, field: str) -> None:
    if value is None:
        return
    validate_string(value, field)


def validate_timestamp(value: Any, field: str) -> None:
    # bool is an int subclass; JSON true/false is never a timestamp
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(
            f"{field} must be an integer (epoch milliseconds)",
            field=field,
            error_type="invalid_type",
        )


def validate_limit(value: int, field: str, max_value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_metadata(metadata: Any, field: str) -> None:
    if metadata is None:
        return
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_query(value: Any, field: str = "query", allow_empty: bool = False) -> None:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if not allow_empty and not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > MAX_QUERY_LENGTH:
        raise ValidationIssue(f"{field} exceeds max length {MAX_QUERY_LENGTH}", field=field, error_type="max_length")
