"""
Message persistence: dedup-key lookup, inserts, partial patches and indexed listings.
"""

from __future__ import annotations

from datetime import timezone
from typing import Optional, Sequence

from sqlalchemy import func

import core.config as config
from core.errors import NotFound, ValidationIssue
from core.models import Message
from core.validators import validate_present

logger = config.logger

# Wire (camelCase) field name -> Message attribute
MESSAGE_FIELDS = {
    "platform": "platform",
    "groupId": "group_id",
    "groupName": "group_name",
    "threadId": "thread_id",
    "messageId": "message_id",
    "content": "content",
    "authorId": "author_id",
    "authorName": "author_name",
    "authorRole": "author_role",
    "timestamp": "timestamp",
    "replyToId": "reply_to_id",
    "replyToText": "reply_to_text",
    "metadata": "metadata_",
}

REQUIRED_FIELDS = (
    "platform",
    "groupId",
    "messageId",
    "content",
    "authorId",
    "authorName",
    "authorRole",
    "timestamp",
)


def _newest_first(query):
    return query.order_by(Message.timestamp.desc(), Message.id.desc())


def _oldest_first(query):
    return query.order_by(Message.timestamp.asc(), Message.id.asc())


def _require_message(db, message_pk: int) -> Message:
    message = db.get(Message, message_pk)
    if message is None:
        raise NotFound(f"Message {message_pk} not found")
    return message


def find_by_external_id(db, platform: str, message_id: str) -> Optional[Message]:
    """Look up a message by its dedup key; the earliest row wins if duplicates exist."""
    return (
        db.query(Message)
        .filter(Message.platform == platform, Message.message_id == message_id)
        .order_by(Message.id.asc())
        .first()
    )


def get_message(db, message_pk: int) -> Optional[Message]:
    return db.get(Message, message_pk)


def get_messages(db, message_pks: Sequence[int]) -> dict[int, Message]:
    if not message_pks:
        return {}
    rows = db.query(Message).filter(Message.id.in_(set(message_pks))).all()
    return {row.id: row for row in rows}


def insert_message(db, payload: dict) -> int:
    """Insert a message from its wire representation and return the storage id."""
    for field in REQUIRED_FIELDS:
        validate_present(payload, field)
    values = {
        attr: payload[wire]
        for wire, attr in MESSAGE_FIELDS.items()
        if wire in payload
    }
    message = Message(**values)
    db.add(message)
    db.commit()
    db.refresh(message)
    return message.id


def patch_content(db, message_pk: int, content: str) -> None:
    message = _require_message(db, message_pk)
    message.content = content
    db.commit()


def patch_embedding(db, message_pk: int, vector: Sequence[float]) -> None:
    message = _require_message(db, message_pk)
    message.embedding = [float(value) for value in vector]
    db.commit()


def list_by_group(
    db,
    platform: str,
    group_id: str,
    limit: int,
    order: str = "desc",
) -> list[Message]:
    query = db.query(Message).filter(
        Message.platform == platform,
        Message.group_id == group_id,
    )
    if order == "asc":
        query = _oldest_first(query)
    elif order == "desc":
        query = _newest_first(query)
    else:
        raise ValidationIssue("order must be 'asc' or 'desc'", field="order", error_type="invalid_value")
    return query.limit(limit).all()


def list_by_thread(db, platform: str, group_id: str, thread_id: str, limit: int) -> list[Message]:
    query = db.query(Message).filter(
        Message.platform == platform,
        Message.group_id == group_id,
        Message.thread_id == thread_id,
    )
    return _newest_first(query).limit(limit).all()


def list_by_author(db, platform: str, author_id: str, limit: int) -> list[Message]:
    query = db.query(Message).filter(
        Message.platform == platform,
        Message.author_id == author_id,
    )
    return _newest_first(query).limit(limit).all()


def list_recent(db, limit: int) -> list[Message]:
    return _newest_first(db.query(Message)).limit(limit).all()


def list_unembedded(db, limit: int) -> list[Message]:
    """
    Return up to ``limit`` messages without an embedding.

    There is no index on embedding absence, so this reads the first
    ``limit * UNEMBEDDED_SCAN_FACTOR`` rows in insertion order and filters them.
    Unembedded rows beyond that window are not seen until earlier ones are embedded.
    """
    window = limit * config.UNEMBEDDED_SCAN_FACTOR
    candidates = db.query(Message).order_by(Message.id.asc()).limit(window).all()
    return [row for row in candidates if row.embedding is None][:limit]


def message_stats(db) -> dict:
    total = db.query(func.count(Message.id)).scalar() or 0

    by_platform = {
        platform: count
        for platform, count in (
            db.query(Message.platform, func.count(Message.id))
            .group_by(Message.platform)
            .all()
        )
    }
    by_group = {
        f"{platform}:{group_id}": count
        for platform, group_id, count in (
            db.query(Message.platform, Message.group_id, func.count(Message.id))
            .group_by(Message.platform, Message.group_id)
            .all()
        )
    }
    oldest, newest = db.query(func.min(Message.timestamp), func.max(Message.timestamp)).one()

    return {
        "total": total,
        "byPlatform": by_platform,
        "byGroup": by_group,
        "oldest": oldest,
        "newest": newest,
    }


def _epoch_ms(value) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def serialize_message(message: Message) -> dict:
    """Wire representation of a stored message (embedding vector omitted)."""
    data = {
        "_id": message.id,
        "_creationTime": _epoch_ms(message.created_at),
    }
    for wire, attr in MESSAGE_FIELDS.items():
        value = getattr(message, attr)
        if value is None and wire not in REQUIRED_FIELDS:
            continue
        data[wire] = value
    data["hasEmbedding"] = message.embedding is not None
    return data


__all__ = [
    "MESSAGE_FIELDS",
    "REQUIRED_FIELDS",
    "find_by_external_id",
    "get_message",
    "get_messages",
    "insert_message",
    "patch_content",
    "patch_embedding",
    "list_by_group",
    "list_by_thread",
    "list_by_author",
    "list_recent",
    "list_unembedded",
    "message_stats",
    "serialize_message",
]
