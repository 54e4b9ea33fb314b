"""
Dependency helpers for the FastAPI app.
"""

from __future__ import annotations

from typing import Generator

from fastapi import Request

from core.db import session_scope
from core.services.message_embeddings import EmbeddingPipeline
from core.services.message_search import NearestNeighborIndex, get_vector_index


def get_db_session() -> Generator:
    with session_scope() as db:
        yield db


def get_embedding_pipeline(request: Request) -> EmbeddingPipeline:
    pipeline = getattr(request.app.state, "embedding_pipeline", None)
    if pipeline is None:
        raise RuntimeError("Embedding pipeline not initialized")
    return pipeline


def get_nearest_neighbor_index() -> NearestNeighborIndex:
    return get_vector_index()
