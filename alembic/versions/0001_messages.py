"""Create messages and sync_state tables.

Revision ID: 0001_messages
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

import core.config as config


revision = "0001_messages"
down_revision = None
branch_labels = None
depends_on = None


def _embedding_type(is_postgres: bool):
    if is_postgres and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from pgvector.sqlalchemy import Vector

        return Vector(config.EMBEDDING_DIM)
    return sa.JSON(none_as_null=True)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("group_id", sa.String(length=255), nullable=False),
        sa.Column("group_name", sa.String(length=500)),
        sa.Column("thread_id", sa.String(length=255)),
        sa.Column("message_id", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("author_id", sa.String(length=255), nullable=False),
        sa.Column("author_name", sa.String(length=500), nullable=False),
        sa.Column("author_role", sa.String(length=50), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("reply_to_id", sa.String(length=255)),
        sa.Column("reply_to_text", sa.Text()),
        sa.Column("metadata", json_type),
        sa.Column("embedding", _embedding_type(is_postgres), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_messages_platform_group", "messages", ["platform", "group_id", "timestamp"])
    op.create_index("ix_messages_platform_group_thread", "messages", ["platform", "group_id", "thread_id"])
    op.create_index("ix_messages_timestamp", "messages", ["timestamp"])
    op.create_index("ix_messages_author", "messages", ["platform", "author_id"])
    op.create_index("ix_messages_message_id", "messages", ["platform", "message_id"])

    if is_postgres and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_messages_embedding_hnsw "
            "ON messages USING hnsw (embedding vector_cosine_ops)"
        )

    op.create_table(
        "sync_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("group_id", sa.String(length=255), nullable=False),
        sa.Column("last_message_id", sa.String(length=255)),
        sa.Column("last_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_sync_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("platform", "group_id", name="uq_sync_state_platform_group"),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.execute("DROP INDEX IF EXISTS ix_messages_embedding_hnsw")
    op.drop_index("ix_messages_message_id", table_name="messages")
    op.drop_index("ix_messages_author", table_name="messages")
    op.drop_index("ix_messages_timestamp", table_name="messages")
    op.drop_index("ix_messages_platform_group_thread", table_name="messages")
    op.drop_index("ix_messages_platform_group", table_name="messages")
    op.drop_table("messages")
