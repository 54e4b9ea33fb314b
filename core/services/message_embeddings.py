"""
Embedding pipeline: OpenAI embedding client, per-message embedding and backfill.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol

import httpx

import core.config as config
from core.db import DB, session_scope
from core.errors import EmbeddingProviderError
from core.services.message_store import get_message, list_unembedded, patch_embedding
from core.validators import validate_limit

logger = config.logger

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class EmbeddingSettings:
    provider: str = "openai"
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    max_input_chars: int = 8000
    timeout_seconds: float = 30.0
    retry_max: int = 0
    retry_backoff_seconds: float = 0.5

    def validate(self) -> None:
        if self.provider not in {"openai", "none"}:
            raise ValueError("EMBEDDING_PROVIDER must be 'openai' or 'none'")
        if self.provider == "openai" and not self.api_key:
            raise ValueError("OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai")
        if self.dimensions <= 0:
            raise ValueError("EMBEDDING_DIM must be positive")
        if self.max_input_chars <= 0:
            raise ValueError("max embedding input length must be positive")


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]:
        ...


class DisabledEmbedder:
    """Embedder used when EMBEDDING_PROVIDER=none; every call fails."""

    def embed(self, text: str) -> List[float]:
        logger.warning("Embedding provider disabled")
        raise EmbeddingProviderError("embedding provider disabled")

    def close(self) -> None:
        pass


class OpenAIEmbedder:
    """Client for the OpenAI embeddings endpoint using a pooled httpx client."""

    def __init__(self, settings: EmbeddingSettings, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        self._client = httpx.Client(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.timeout_seconds),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request_body(self, text: str) -> dict:
        body = {
            "model": self.settings.model,
            "input": text[: self.settings.max_input_chars],
        }
        if self.settings.model.startswith("text-embedding-3"):
            body["dimensions"] = self.settings.dimensions
        return body

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.settings.retry_backoff_seconds * (2 ** attempt)
        time.sleep(base + random.uniform(0, base / 2))

    def _parse(self, response: httpx.Response) -> List[float]:
        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmbeddingProviderError("malformed embedding response") from exc
        if not isinstance(vector, list) or not all(
            isinstance(value, (int, float)) and not isinstance(value, bool) for value in vector
        ):
            raise EmbeddingProviderError("malformed embedding response")
        if len(vector) != self.settings.dimensions:
            raise EmbeddingProviderError(
                f"embedding dimension {len(vector)} != expected {self.settings.dimensions}"
            )
        return [float(value) for value in vector]

    def embed(self, text: str) -> List[float]:
        body = self._request_body(text)
        for attempt in range(self.settings.retry_max + 1):
            try:
                response = self._client.post("/embeddings", json=body)
            except httpx.RequestError as exc:
                if attempt >= self.settings.retry_max:
                    logger.warning(f"Embedding request failed: {exc}")
                    raise EmbeddingProviderError(f"embedding request failed: {exc}") from exc
                self._sleep_backoff(attempt)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.settings.retry_max:
                self._sleep_backoff(attempt)
                continue
            if response.status_code >= 400:
                logger.warning(f"Embedding provider returned status {response.status_code}")
                raise EmbeddingProviderError(
                    f"embedding provider returned status {response.status_code}",
                    status_code=response.status_code,
                )
            return self._parse(response)
        raise EmbeddingProviderError("embedding retries exhausted")


def build_embedder(settings: EmbeddingSettings) -> Embedder:
    if settings.provider == "none":
        return DisabledEmbedder()
    return OpenAIEmbedder(settings)


class EmbeddingPipeline:
    """Computes and persists message embeddings via an injected embedder."""

    def __init__(self, settings: EmbeddingSettings, embedder: Optional[Embedder] = None):
        self.settings = settings
        self.embedder = embedder if embedder is not None else build_embedder(settings)

    def close(self) -> None:
        close = getattr(self.embedder, "close", None)
        if close is not None:
            close()

    def embed_query(self, text: str) -> List[float]:
        return self.embedder.embed(text[: self.settings.max_input_chars])

    def embed_message(self, db, message_pk: int) -> bool:
        """Embed one message; returns False when it is missing or already embedded."""
        message = get_message(db, message_pk)
        if message is None or message.embedding is not None:
            return False
        vector = self.embedder.embed(message.content[: self.settings.max_input_chars])
        patch_embedding(db, message.id, vector)
        return True

    def embed_pending(self, db, limit: int = 100) -> int:
        """
        Embed up to ``limit`` messages that have no embedding yet.

        Messages are embedded one at a time; an embedding failure propagates and
        leaves the messages embedded before it in place. Re-running is safe.
        """
        validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
        count = 0
        for message in list_unembedded(db, limit):
            vector = self.embedder.embed(message.content[: self.settings.max_input_chars])
            patch_embedding(db, message.id, vector)
            count += 1
        return count


def run_embedding_backfill(pipeline: EmbeddingPipeline) -> dict:
    if DB.SessionLocal is None:
        return {"status": "skipped", "reason": "db_not_initialized"}
    if pipeline.settings.provider == "none":
        return {"status": "skipped", "reason": "embedding_disabled"}
    if config.EMBEDDING_BACKFILL_BATCH_LIMIT <= 0:
        return {"status": "skipped", "reason": "batch_limit_disabled"}

    with session_scope() as db:
        embedded = pipeline.embed_pending(db, config.EMBEDDING_BACKFILL_BATCH_LIMIT)
    return {"status": "ok", "embedded": embedded}


async def embedding_backfill_loop(pipeline: EmbeddingPipeline) -> None:
    if config.EMBEDDING_BACKFILL_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.EMBEDDING_BACKFILL_INTERVAL_SECONDS)
        try:
            stats = await asyncio.to_thread(run_embedding_backfill, pipeline)
            if stats.get("status") == "ok" and stats.get("embedded", 0) > 0:
                logger.info("embedding_backfill_complete", extra=stats)
        except Exception as exc:
            logger.warning(f"Embedding backfill error: {exc}")


__all__ = [
    "EmbeddingSettings",
    "Embedder",
    "DisabledEmbedder",
    "OpenAIEmbedder",
    "build_embedder",
    "EmbeddingPipeline",
    "run_embedding_backfill",
    "embedding_backfill_loop",
]
