"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "MessageVault",
        "version": "0.1.0",
        "description": "Unified chat message archive with keyword and semantic search",
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "messages": "/messages",
            "messages_batch": "/messages/batch",
            "keyword_search": "/messages/search",
            "semantic_search": "/messages/similar",
            "embed_pending": "/messages/embed",
            "stats": "/stats",
            "sync_state": "/sync-state",
        },
    }
