"""
Retrieval services: group listing, keyword search and semantic search.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy as np
from sqlalchemy import text

import core.config as config
from core.errors import ValidationIssue
from core.models import Message
from core.services.message_embeddings import EmbeddingPipeline
from core.services.message_store import (
    get_messages,
    list_by_group,
    list_recent,
    serialize_message,
)
from core.validators import validate_limit, validate_query

logger = config.logger

# Columns the nearest-neighbour index may filter on, most selective first.
VECTOR_FILTER_COLUMNS = ("author_id", "group_id", "platform")

ExactFilter = tuple[str, str]


class NearestNeighborIndex(Protocol):
    def search_nearest(
        self,
        db,
        vector: Sequence[float],
        k: int,
        exact_filter: Optional[ExactFilter] = None,
    ) -> list[tuple[int, float]]:
        """Return up to ``k`` (message id, similarity) pairs, most similar first."""
        ...


def _check_filter(exact_filter: Optional[ExactFilter]) -> None:
    if exact_filter is not None and exact_filter[0] not in VECTOR_FILTER_COLUMNS:
        raise ValidationIssue(
            f"Unsupported vector filter column: {exact_filter[0]}",
            field="exact_filter",
            error_type="invalid_value",
        )


class PgVectorIndex:
    """Cosine nearest-neighbour search over the pgvector ``embedding`` column."""

    def search_nearest(self, db, vector, k, exact_filter=None):
        _check_filter(exact_filter)
        filter_sql = ""
        params = {"embedding": str([float(value) for value in vector]), "limit": k}
        if exact_filter is not None:
            # column name comes from VECTOR_FILTER_COLUMNS, never from input
            filter_sql = f"AND {exact_filter[0]} = :filter_value"
            params["filter_value"] = exact_filter[1]
        sql = text(
            f"""
            SELECT id, 1 - (embedding <=> cast(:embedding as vector)) AS similarity
            FROM messages
            WHERE embedding IS NOT NULL
            {filter_sql}
            ORDER BY embedding <=> cast(:embedding as vector)
            LIMIT :limit
            """
        )
        rows = db.execute(sql, params).fetchall()
        return [(row.id, float(row.similarity)) for row in rows]


class NumpyVectorIndex:
    """Exact cosine scan over JSON-stored vectors, for backends without pgvector."""

    def search_nearest(self, db, vector, k, exact_filter=None):
        _check_filter(exact_filter)
        query = db.query(Message.id, Message.embedding).filter(Message.embedding.isnot(None))
        if exact_filter is not None:
            query = query.filter(getattr(Message, exact_filter[0]) == exact_filter[1])

        target = np.asarray(vector, dtype=float)
        target_norm = np.linalg.norm(target)
        if target_norm == 0:
            return []

        ids = []
        rows = []
        for message_pk, embedding in query.all():
            if embedding is None or len(embedding) != len(target):
                continue
            ids.append(message_pk)
            rows.append(embedding)
        if not rows:
            return []

        matrix = np.asarray(rows, dtype=float)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        scores = matrix @ target / (norms * target_norm)
        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        return [(ids[i], float(scores[i])) for i in order]


def get_vector_index() -> NearestNeighborIndex:
    if config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        return PgVectorIndex()
    return NumpyVectorIndex()


def choose_vector_filter(
    platform: Optional[str] = None,
    group_id: Optional[str] = None,
    author_id: Optional[str] = None,
) -> Optional[ExactFilter]:
    """Pick the single filter the index applies natively: author, then group, then platform."""
    values = {"author_id": author_id, "group_id": group_id, "platform": platform}
    for column in VECTOR_FILTER_COLUMNS:
        if values[column]:
            return column, values[column]
    return None


def _matches_filters(
    message: Message,
    platform: Optional[str],
    group_id: Optional[str],
    author_id: Optional[str],
) -> bool:
    if platform and message.platform != platform:
        return False
    if group_id and message.group_id != group_id:
        return False
    if author_id and message.author_id != author_id:
        return False
    return True


def get_by_group(
    db,
    platform: str,
    group_id: str,
    thread_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """
    Newest-first messages of a group.

    The thread filter is applied after the ``limit`` newest group messages are
    taken, so fewer than ``limit`` results may come back even when older
    messages of the thread exist.
    """
    limit = config.GROUP_LIST_DEFAULT_LIMIT if limit is None else limit
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    messages = list_by_group(db, platform, group_id, limit, order="desc")
    if thread_id:
        messages = [message for message in messages if message.thread_id == thread_id]
    return [serialize_message(message) for message in messages]


def search_messages(
    db,
    query: str,
    platform: Optional[str] = None,
    group_id: Optional[str] = None,
    author_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """
    Case-insensitive substring search over the most recent messages.

    Only the newest KEYWORD_SEARCH_SCAN_LIMIT messages are scanned; older matches
    are not found.
    """
    # substring semantics: "" matches every scanned message
    validate_query(query, allow_empty=True)
    limit = config.KEYWORD_SEARCH_DEFAULT_LIMIT if limit is None else limit
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)

    needle = query.lower()
    results = []
    for message in list_recent(db, config.KEYWORD_SEARCH_SCAN_LIMIT):
        if not _matches_filters(message, platform, group_id, author_id):
            continue
        if needle in message.content.lower():
            results.append(serialize_message(message))
            if len(results) >= limit:
                break
    return results


def vector_search(
    db,
    query: str,
    *,
    pipeline: EmbeddingPipeline,
    index: Optional[NearestNeighborIndex] = None,
    platform: Optional[str] = None,
    group_id: Optional[str] = None,
    author_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """
    Semantic search: nearest neighbours of the query embedding, then exact filtering.

    The index applies at most one filter, so ``limit * VECTOR_SEARCH_OVERFETCH``
    candidates are requested and every supplied filter is re-checked on the full
    records. Results keep the index's similarity order.
    """
    validate_query(query)
    limit = config.VECTOR_SEARCH_DEFAULT_LIMIT if limit is None else limit
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    index = index if index is not None else get_vector_index()

    query_vector = pipeline.embed_query(query)
    exact_filter = choose_vector_filter(platform, group_id, author_id)
    candidates = index.search_nearest(
        db,
        query_vector,
        limit * config.VECTOR_SEARCH_OVERFETCH,
        exact_filter,
    )
    records = get_messages(db, [message_pk for message_pk, _ in candidates])

    results = []
    for message_pk, score in candidates:
        message = records.get(message_pk)
        if message is None or not _matches_filters(message, platform, group_id, author_id):
            continue
        item = serialize_message(message)
        item["_score"] = score
        results.append(item)
        if len(results) >= limit:
            break

    logger.debug(
        "vector_search",
        extra={
            "candidates": len(candidates),
            "returned": len(results),
            "native_filter": exact_filter[0] if exact_filter else None,
        },
    )
    return results


__all__ = [
    "VECTOR_FILTER_COLUMNS",
    "NearestNeighborIndex",
    "PgVectorIndex",
    "NumpyVectorIndex",
    "get_vector_index",
    "choose_vector_filter",
    "get_by_group",
    "search_messages",
    "vector_search",
]
