import pytest

from conftest import make_message
from core.errors import ValidationIssue
from core.services import message_search
from core.services.message_search import (
    NumpyVectorIndex,
    choose_vector_filter,
    get_by_group,
    search_messages,
    vector_search,
)
from core.services.message_store import insert_message, patch_embedding


class RecordingIndex:
    """Nearest-neighbour stub that returns fixed candidates and records its call."""

    def __init__(self, candidates):
        self.candidates = candidates
        self.calls = []

    def search_nearest(self, db, vector, k, exact_filter=None):
        self.calls.append({"vector": vector, "k": k, "exact_filter": exact_filter})
        return self.candidates[:k]


def _insert(db, **overrides) -> int:
    return insert_message(db, make_message(**overrides))


def test_get_by_group_filters_thread_after_taking_window(db_session):
    # 60 messages, thread "T" on the 5th..14th oldest
    for i in range(1, 61):
        thread = "T" if 5 <= i <= 14 else None
        _insert(db_session, messageId=str(i), timestamp=i, threadId=thread)

    results = get_by_group(db_session, "telegram", "-100", thread_id="T")

    # default window holds timestamps 11..60, so only 11..14 survive
    assert [m["timestamp"] for m in results] == [14, 13, 12, 11]
    assert all(m["threadId"] == "T" for m in results)


def test_get_by_group_limit_and_order(db_session):
    for i in range(1, 8):
        _insert(db_session, messageId=str(i), timestamp=i * 10)

    results = get_by_group(db_session, "telegram", "-100", limit=5)
    assert len(results) == 5
    timestamps = [m["timestamp"] for m in results]
    assert timestamps == sorted(timestamps, reverse=True)
    assert timestamps[0] == 70

    with pytest.raises(ValidationIssue):
        get_by_group(db_session, "telegram", "-100", limit=0)
    with pytest.raises(ValidationIssue) as excinfo:
        get_by_group(db_session, "telegram", "-100", limit=1001)
    assert excinfo.value.error_type == "out_of_range"


def test_keyword_search_is_case_insensitive_with_filters(db_session):
    _insert(db_session, messageId="1", content="Pizza tonight?", timestamp=1)
    _insert(db_session, messageId="2", content="no PIZZA for me", authorId="u2", timestamp=2)
    _insert(db_session, messageId="3", content="pizza in slack", platform="slack", groupId="C1", timestamp=3)
    _insert(db_session, messageId="4", content="salad", timestamp=4)

    all_hits = search_messages(db_session, "pizza")
    assert [m["messageId"] for m in all_hits] == ["3", "2", "1"]

    telegram_u1 = search_messages(db_session, "pizza", platform="telegram", author_id="u1")
    assert [m["messageId"] for m in telegram_u1] == ["1"]

    group_hits = search_messages(db_session, "pizza", group_id="C1")
    assert [m["messageId"] for m in group_hits] == ["3"]

    assert len(search_messages(db_session, "pizza", limit=2)) == 2


def test_keyword_search_only_scans_recent_window(db_session, monkeypatch):
    monkeypatch.setattr(message_search.config, "KEYWORD_SEARCH_SCAN_LIMIT", 5)
    _insert(db_session, messageId="old", content="needle", timestamp=1)
    for i in range(2, 8):
        _insert(db_session, messageId=str(i), content="hay", timestamp=i)

    assert search_messages(db_session, "needle") == []


def test_keyword_search_empty_and_whitespace_queries_are_substrings(db_session):
    _insert(db_session, messageId="1", content="a b", timestamp=2)
    _insert(db_session, messageId="2", content="ab", timestamp=1)

    assert [m["messageId"] for m in search_messages(db_session, "")] == ["1", "2"]
    assert [m["messageId"] for m in search_messages(db_session, " ")] == ["1"]


def test_keyword_search_rejects_non_string_and_overlong_query(db_session, monkeypatch):
    with pytest.raises(ValidationIssue):
        search_messages(db_session, None)

    monkeypatch.setattr("core.validators.MAX_QUERY_LENGTH", 4)
    with pytest.raises(ValidationIssue) as excinfo:
        search_messages(db_session, "abcde")
    assert excinfo.value.error_type == "max_length"


def test_vector_search_rejects_blank_query(db_session, pipeline):
    with pytest.raises(ValidationIssue):
        vector_search(db_session, "   ", pipeline=pipeline, index=RecordingIndex([]))


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"platform": "telegram", "group_id": "-100", "author_id": "u1"}, ("author_id", "u1")),
        ({"platform": "telegram", "group_id": "-100"}, ("group_id", "-100")),
        ({"platform": "telegram"}, ("platform", "telegram")),
        ({"platform": "telegram", "author_id": "u1"}, ("author_id", "u1")),
        ({}, None),
    ],
)
def test_choose_vector_filter_prefers_most_selective(kwargs, expected):
    assert choose_vector_filter(**kwargs) == expected


def test_vector_search_post_filters_every_supplied_filter(db_session, pipeline):
    good_1 = _insert(db_session, messageId="1", content="cat")
    wrong_group = _insert(db_session, messageId="2", content="cat", groupId="-999")
    wrong_platform = _insert(db_session, messageId="3", content="cat", platform="slack")
    good_2 = _insert(db_session, messageId="4", content="cat cat")
    index = RecordingIndex(
        [(wrong_group, 0.99), (good_1, 0.95), (wrong_platform, 0.9), (9999, 0.85), (good_2, 0.8)]
    )

    results = vector_search(
        db_session,
        "cat",
        pipeline=pipeline,
        index=index,
        platform="telegram",
        group_id="-100",
        author_id="u1",
        limit=5,
    )

    assert [r["_id"] for r in results] == [good_1, good_2]
    assert [r["_score"] for r in results] == [0.95, 0.8]
    for result in results:
        assert (result["platform"], result["groupId"], result["authorId"]) == ("telegram", "-100", "u1")

    call = index.calls[0]
    assert call["k"] == 15
    assert call["exact_filter"] == ("author_id", "u1")
    assert call["vector"] == [1.0, 0.0, 0.0, 0.01]


def test_vector_search_truncates_to_limit_in_index_order(db_session, pipeline):
    ids = [_insert(db_session, messageId=str(i), content="dog") for i in range(4)]
    index = RecordingIndex([(ids[2], 0.9), (ids[0], 0.8), (ids[3], 0.7), (ids[1], 0.6)])

    results = vector_search(db_session, "dog", pipeline=pipeline, index=index, limit=2)

    assert [r["_id"] for r in results] == [ids[2], ids[0]]
    assert index.calls[0]["k"] == 6
    assert index.calls[0]["exact_filter"] is None


def test_numpy_index_ranks_by_cosine_similarity(db_session, pipeline):
    cat = _insert(db_session, messageId="cat", content="the cat sat")
    dog = _insert(db_session, messageId="dog", content="a dog barked")
    mixed = _insert(db_session, messageId="mixed", content="cat and dog", authorId="u2")
    _insert(db_session, messageId="pending", content="cat without embedding")
    for message_pk in (cat, dog, mixed):
        pipeline.embed_message(db_session, message_pk)

    index = NumpyVectorIndex()
    ranked = index.search_nearest(db_session, [1.0, 0.0, 0.0, 0.01], k=10)
    assert [message_pk for message_pk, _ in ranked] == [cat, mixed, dog]
    assert ranked[0][1] == pytest.approx(1.0)

    only_u2 = index.search_nearest(db_session, [1.0, 0.0, 0.0, 0.01], k=10, exact_filter=("author_id", "u2"))
    assert [message_pk for message_pk, _ in only_u2] == [mixed]

    assert len(index.search_nearest(db_session, [1.0, 0.0, 0.0, 0.01], k=1)) == 1

    with pytest.raises(ValidationIssue):
        index.search_nearest(db_session, [1.0], k=1, exact_filter=("content", "x"))


def test_vector_search_end_to_end_with_numpy_index(db_session, pipeline):
    pizza = _insert(db_session, messageId="1", content="pizza party", groupId="g1")
    _insert(db_session, messageId="2", content="pizza elsewhere", groupId="g2")
    _insert(db_session, messageId="3", content="dog walk", groupId="g1")
    assert pipeline.embed_pending(db_session) == 3

    results = vector_search(
        db_session,
        "Pizza?",
        pipeline=pipeline,
        index=NumpyVectorIndex(),
        group_id="g1",
        limit=1,
    )
    assert len(results) == 1
    assert results[0]["_id"] == pizza
    assert results[0]["_score"] > 0.9
