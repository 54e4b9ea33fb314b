import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "numpy")
os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("EMBEDDING_BACKFILL_ENABLED", "false")

import pytest

from core.db import DB, bind_engine, build_engine
from core.models import Base
from core.services.message_embeddings import EmbeddingPipeline, EmbeddingSettings

VOCABULARY = ("cat", "dog", "pizza")


class KeywordEmbedder:
    """Deterministic embedder: one axis per vocabulary word plus a small bias axis."""

    def __init__(self, fail_on: str | None = None):
        self.calls: list[str] = []
        self.fail_on = fail_on

    def embed(self, text: str) -> list[float]:
        from core.errors import EmbeddingProviderError

        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingProviderError("embedding provider returned status 500")
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.01]


def make_message(**overrides) -> dict:
    payload = {
        "platform": "telegram",
        "groupId": "-100",
        "messageId": "m1",
        "content": "hello",
        "authorId": "u1",
        "authorName": "Bob",
        "authorRole": "user",
        "timestamp": 1000,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "messagevault.sqlite"
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    previous_engine, previous_session = DB.engine, DB.SessionLocal
    bind_engine(engine)
    try:
        yield DB.SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    db = server_db()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def pipeline(embedder):
    settings = EmbeddingSettings(provider="openai", api_key="test-key", dimensions=len(VOCABULARY) + 1)
    return EmbeddingPipeline(settings, embedder=embedder)
