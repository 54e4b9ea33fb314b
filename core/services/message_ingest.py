"""
Message ingest: validation and dedup-aware single/batch saves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import core.config as config
from core.errors import ValidationIssue
from core.services.message_store import (
    REQUIRED_FIELDS,
    find_by_external_id,
    insert_message,
    patch_content,
)
from core.validators import (
    validate_limit,
    validate_metadata,
    validate_optional_string,
    validate_present,
    validate_string,
    validate_timestamp,
)

logger = config.logger

OPTIONAL_STRING_FIELDS = ("groupName", "threadId", "replyToId", "replyToText")


class SaveOutcome(str, Enum):
    inserted = "inserted"
    updated = "updated"
    unchanged = "unchanged"


@dataclass
class BatchSaveResult:
    outcomes: list[SaveOutcome] = field(default_factory=list)

    @property
    def saved(self) -> int:
        """Number of newly inserted records."""
        return sum(1 for outcome in self.outcomes if outcome is SaveOutcome.inserted)

    @property
    def updated(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome is SaveOutcome.updated)


def validate_message_payload(payload: Any, field_prefix: str = "") -> None:
    if not isinstance(payload, dict):
        label = field_prefix.rstrip(".") or "message"
        raise ValidationIssue(f"{label} must be a JSON object", field=label, error_type="invalid_type")
    for name in REQUIRED_FIELDS:
        validate_present(payload, name, label=f"{field_prefix}{name}")
    for name in REQUIRED_FIELDS:
        if name == "timestamp":
            validate_timestamp(payload[name], f"{field_prefix}{name}")
        else:
            validate_string(payload[name], f"{field_prefix}{name}")
    for name in OPTIONAL_STRING_FIELDS:
        validate_optional_string(payload.get(name), f"{field_prefix}{name}")
    validate_metadata(payload.get("metadata"), f"{field_prefix}metadata")


def _save_validated(db, payload: dict) -> SaveOutcome:
    existing = find_by_external_id(db, payload["platform"], payload["messageId"])
    if existing is None:
        insert_message(db, payload)
        return SaveOutcome.inserted
    if existing.content != payload["content"]:
        patch_content(db, existing.id, payload["content"])
        return SaveOutcome.updated
    return SaveOutcome.unchanged


def save_message(db, payload: dict) -> SaveOutcome:
    """
    Save one message, deduplicated on (platform, messageId).

    A repeat save with changed content patches the stored content; an identical
    repeat is a no-op. Check-then-insert is not atomic: two concurrent saves of
    the same key can both insert.
    """
    validate_message_payload(payload)
    outcome = _save_validated(db, payload)
    logger.debug(
        "message_saved",
        extra={
            "platform": payload["platform"],
            "message_id": payload["messageId"],
            "outcome": outcome.value,
        },
    )
    return outcome


def save_batch(db, payloads: Sequence[dict]) -> BatchSaveResult:
    """
    Save many messages with the same dedup rules as ``save_message``.

    Every element is validated before anything is written; one invalid element
    rejects the whole batch. Writes are committed per element, so a failure
    part-way leaves the earlier elements saved.
    """
    if not isinstance(payloads, (list, tuple)):
        raise ValidationIssue("Missing messages array", field="messages", error_type="invalid_type")
    if payloads:
        validate_limit(len(payloads), "messages", config.MAX_BATCH_SIZE)
    for index, payload in enumerate(payloads):
        validate_message_payload(payload, field_prefix=f"messages[{index}].")

    result = BatchSaveResult()
    for payload in payloads:
        result.outcomes.append(_save_validated(db, payload))

    logger.info(
        "message_batch_saved",
        extra={"received": len(payloads), "saved": result.saved, "updated": result.updated},
    )
    return result


__all__ = [
    "SaveOutcome",
    "BatchSaveResult",
    "validate_message_payload",
    "save_message",
    "save_batch",
]
