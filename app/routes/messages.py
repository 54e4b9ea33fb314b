"""
Message ingest and retrieval endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from app.deps import get_db_session, get_embedding_pipeline, get_nearest_neighbor_index
from core.errors import ValidationIssue
from core.services.message_embeddings import EmbeddingPipeline
from core.services.message_ingest import save_batch, save_message
from core.services.message_search import (
    NearestNeighborIndex,
    get_by_group,
    search_messages,
    vector_search,
)
from core.services.message_store import message_stats


router = APIRouter()

DEFAULT_EMBED_BATCH_LIMIT = 100


async def read_json_body(request: Request, allow_empty: bool = False) -> Any:
    raw = await request.body()
    if not raw.strip() and allow_empty:
        return {}
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationIssue("Invalid JSON body", field="body", error_type="invalid_json") from exc


@router.post("/messages")
async def post_message(request: Request, db=Depends(get_db_session)):
    """Save a single message (deduplicated on platform + messageId)."""
    payload = await read_json_body(request)
    await run_in_threadpool(save_message, db, payload)
    return {"ok": True}


@router.post("/messages/batch")
async def post_message_batch(request: Request, db=Depends(get_db_session)):
    """Save many messages; ``saved`` counts newly inserted records only."""
    body = await read_json_body(request)
    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list):
        raise ValidationIssue("Missing messages array", field="messages", error_type="required")
    result = await run_in_threadpool(save_batch, db, messages)
    return {"ok": True, "saved": result.saved}


@router.get("/messages")
def list_messages(
    platform: Optional[str] = None,
    group_id: Optional[str] = Query(None, alias="groupId"),
    thread_id: Optional[str] = Query(None, alias="threadId"),
    limit: Optional[int] = None,
    db=Depends(get_db_session),
):
    if not platform or not group_id:
        raise ValidationIssue("platform and groupId required", field="groupId", error_type="required")
    return get_by_group(db, platform, group_id, thread_id=thread_id or None, limit=limit)


@router.get("/messages/search")
def keyword_search(
    query: Optional[str] = None,
    platform: Optional[str] = None,
    group_id: Optional[str] = Query(None, alias="groupId"),
    author_id: Optional[str] = Query(None, alias="authorId"),
    limit: Optional[int] = None,
    db=Depends(get_db_session),
):
    """Substring search over recent messages."""
    return search_messages(
        db,
        query,
        platform=platform or None,
        group_id=group_id or None,
        author_id=author_id or None,
        limit=limit,
    )


@router.get("/messages/similar")
def semantic_search(
    query: Optional[str] = None,
    platform: Optional[str] = None,
    group_id: Optional[str] = Query(None, alias="groupId"),
    author_id: Optional[str] = Query(None, alias="authorId"),
    limit: Optional[int] = None,
    db=Depends(get_db_session),
    pipeline: EmbeddingPipeline = Depends(get_embedding_pipeline),
    index: NearestNeighborIndex = Depends(get_nearest_neighbor_index),
):
    """Embedding similarity search; each result carries ``_score``."""
    return vector_search(
        db,
        query,
        pipeline=pipeline,
        index=index,
        platform=platform or None,
        group_id=group_id or None,
        author_id=author_id or None,
        limit=limit,
    )


@router.post("/messages/embed")
async def embed_pending_messages(
    request: Request,
    db=Depends(get_db_session),
    pipeline: EmbeddingPipeline = Depends(get_embedding_pipeline),
):
    """Embed messages that have no embedding yet."""
    body = await read_json_body(request, allow_empty=True)
    limit = body.get("limit", DEFAULT_EMBED_BATCH_LIMIT) if isinstance(body, dict) else DEFAULT_EMBED_BATCH_LIMIT
    embedded = await run_in_threadpool(pipeline.embed_pending, db, limit)
    return {"embedded": embedded}


@router.get("/stats")
def stats(db=Depends(get_db_session)):
    return message_stats(db)
