"""
FastAPI app wiring for MessageVault.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import core.config as config
from core.db import dispose_db, init_db
from core.services.message_embeddings import (
    EmbeddingPipeline,
    embedding_backfill_loop,
    run_embedding_backfill,
)
from app.errors import configure_exception_handlers
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.messages import router as messages_router
from app.routes.root import router as root_router
from app.routes.sync import router as sync_router


embedding_backfill_task = None


async def _initial_backfill(pipeline: EmbeddingPipeline) -> None:
    try:
        stats = await asyncio.to_thread(run_embedding_backfill, pipeline)
        config.logger.info("embedding_backfill_startup", extra=stats)
    except Exception as exc:
        config.logger.warning(f"Embedding backfill error: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global embedding_backfill_task
    init_db()
    pipeline = EmbeddingPipeline(config.load_embedding_settings())
    app.state.embedding_pipeline = pipeline
    if config.EMBEDDING_BACKFILL_ENABLED and pipeline.settings.provider != "none":
        await _initial_backfill(pipeline)
        if config.EMBEDDING_BACKFILL_INTERVAL_SECONDS > 0:
            embedding_backfill_task = asyncio.create_task(embedding_backfill_loop(pipeline))
    try:
        yield
    finally:
        if embedding_backfill_task:
            embedding_backfill_task.cancel()
            try:
                await embedding_backfill_task
            except asyncio.CancelledError:
                pass
        pipeline.close()
        dispose_db()


app = FastAPI(title="MessageVault", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)
configure_exception_handlers(app)

app.include_router(health_router)
app.include_router(root_router)
app.include_router(messages_router)
app.include_router(sync_router)
