import json

import httpx
import pytest

from conftest import KeywordEmbedder, make_message
from core.errors import EmbeddingProviderError
from core.services.message_embeddings import (
    DisabledEmbedder,
    EmbeddingPipeline,
    EmbeddingSettings,
    OpenAIEmbedder,
    build_embedder,
)
from core.services.message_store import get_message, insert_message, patch_embedding


def _settings(**overrides) -> EmbeddingSettings:
    values = {"provider": "openai", "api_key": "sk-test", "dimensions": 3}
    values.update(overrides)
    return EmbeddingSettings(**values)


def _mock_embedder(handler, **overrides) -> OpenAIEmbedder:
    return OpenAIEmbedder(_settings(**overrides), transport=httpx.MockTransport(handler))


def test_embed_message_calls_provider_at_most_once(db_session, pipeline, embedder):
    message_pk = insert_message(db_session, make_message(content="my cat"))

    assert pipeline.embed_message(db_session, message_pk) is True
    assert pipeline.embed_message(db_session, message_pk) is False

    assert embedder.calls == ["my cat"]
    db_session.expire_all()
    assert get_message(db_session, message_pk).embedding == [1.0, 0.0, 0.0, 0.01]


def test_embed_message_missing_id_is_noop(db_session, pipeline, embedder):
    assert pipeline.embed_message(db_session, 12345) is False
    assert embedder.calls == []


def test_embed_message_truncates_content(db_session, pipeline, embedder):
    message_pk = insert_message(db_session, make_message(content="x" * 9000))
    pipeline.embed_message(db_session, message_pk)
    assert len(embedder.calls[0]) == 8000


def test_embed_pending_skips_embedded_and_respects_limit(db_session, pipeline, embedder):
    ids = [
        insert_message(db_session, make_message(messageId=str(i), content=f"dog {i}"))
        for i in range(5)
    ]
    patch_embedding(db_session, ids[0], [0.0, 1.0, 0.0, 0.01])

    assert pipeline.embed_pending(db_session, limit=2) == 2
    assert embedder.calls == ["dog 1", "dog 2"]

    assert pipeline.embed_pending(db_session, limit=100) == 2
    assert pipeline.embed_pending(db_session, limit=100) == 0
    assert len(embedder.calls) == 4


def test_embed_pending_failure_keeps_earlier_embeddings(db_session):
    embedder = KeywordEmbedder(fail_on="boom")
    pipeline = EmbeddingPipeline(_settings(dimensions=4), embedder=embedder)
    first = insert_message(db_session, make_message(messageId="1", content="fine"))
    second = insert_message(db_session, make_message(messageId="2", content="boom"))

    with pytest.raises(EmbeddingProviderError):
        pipeline.embed_pending(db_session)

    db_session.expire_all()
    assert get_message(db_session, first).embedding is not None
    assert get_message(db_session, second).embedding is None


def test_openai_embedder_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    embedder = _mock_embedder(handler, max_input_chars=10)
    try:
        assert embedder.embed("abcdefghijklmnop") == [0.1, 0.2, 0.3]
    finally:
        embedder.close()

    assert seen["url"] == "https://api.openai.com/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"model": "text-embedding-3-small", "input": "abcdefghij", "dimensions": 3}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "oops"}),
        httpx.Response(401, json={"error": "bad key"}),
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"data": [{"embedding": ["a", "b", "c"]}]}),
        httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]}),
    ],
)
def test_openai_embedder_failures_raise(response):
    embedder = _mock_embedder(lambda request: response)
    try:
        with pytest.raises(EmbeddingProviderError):
            embedder.embed("hello")
    finally:
        embedder.close()


def test_openai_embedder_does_not_retry_by_default():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503)

    embedder = _mock_embedder(handler)
    with pytest.raises(EmbeddingProviderError) as excinfo:
        embedder.embed("hello")
    assert len(attempts) == 1
    assert excinfo.value.status_code == 503


def test_openai_embedder_retries_when_configured():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"data": [{"embedding": [1, 2, 3]}]})

    embedder = _mock_embedder(handler, retry_max=1, retry_backoff_seconds=0.0)
    assert embedder.embed("hello") == [1.0, 2.0, 3.0]
    assert len(attempts) == 2


def test_settings_validation():
    _settings().validate()
    EmbeddingSettings(provider="none").validate()
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        EmbeddingSettings(provider="openai", api_key=None).validate()
    with pytest.raises(ValueError):
        EmbeddingSettings(provider="cohere", api_key="x").validate()


def test_disabled_provider_raises_at_call_time():
    embedder = build_embedder(EmbeddingSettings(provider="none"))
    assert isinstance(embedder, DisabledEmbedder)
    with pytest.raises(EmbeddingProviderError):
        embedder.embed("hello")
