"""
MessageVault Database Models
PostgreSQL + pgvector schema (SQLite + JSON vectors for local/test use)
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, DateTime, Index, UniqueConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except Exception:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
else:
    EMBEDDING_COLUMN_TYPE = JSON(none_as_null=True)

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON

Base = declarative_base()


# =============================================================================
# Messages
# =============================================================================

class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)

    # Source
    platform = Column(String(50), nullable=False)  # "telegram", "slack", "discord", ...
    group_id = Column(String(255), nullable=False)
    group_name = Column(String(500))
    thread_id = Column(String(255))  # Slack threads, Telegram topics

    # Message
    message_id = Column(String(255), nullable=False)  # platform-specific id
    content = Column(Text, nullable=False)

    # Author
    author_id = Column(String(255), nullable=False)
    author_name = Column(String(500), nullable=False)
    author_role = Column(String(50), nullable=False)  # "user", "assistant", "system"

    timestamp = Column(BigInteger, nullable=False)  # Unix ms, caller supplied

    # Reply context
    reply_to_id = Column(String(255))
    reply_to_text = Column(Text)

    metadata_ = Column("metadata", JSON_TYPE)
    embedding = Column(EMBEDDING_COLUMN_TYPE, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    # (platform, message_id) is the dedup key; uniqueness is enforced by ingest, not the index.
    __table_args__ = (
        Index("ix_messages_platform_group", "platform", "group_id", "timestamp"),
        Index("ix_messages_platform_group_thread", "platform", "group_id", "thread_id"),
        Index("ix_messages_timestamp", "timestamp"),
        Index("ix_messages_author", "platform", "author_id"),
        Index("ix_messages_message_id", "platform", "message_id"),
    )


# =============================================================================
# Sync State
# =============================================================================

class SyncState(Base):
    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True)
    platform = Column(String(50), nullable=False)
    group_id = Column(String(255), nullable=False)
    last_message_id = Column(String(255))
    last_timestamp = Column(BigInteger, nullable=False)
    last_sync_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("platform", "group_id", name="uq_sync_state_platform_group"),
    )
