from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from wikirank.providers.memory import (
    InMemoryLexicalIndex,
    InMemoryMetadataStore,
    InMemoryVectorIndex,
)
from wikirank.providers.qdrant import QdrantVectorIndex, build_filter
from wikirank.query.backends import (
    BackendUnavailableError,
    LexicalIndex,
    MetadataStore,
    VectorIndex,
)


def test_adapters_satisfy_protocols(vector_index, lexical_index, metadata_store):
    assert isinstance(vector_index, VectorIndex)
    assert isinstance(lexical_index, LexicalIndex)
    assert isinstance(metadata_store, MetadataStore)


class TestInMemoryVectorIndex:
    @pytest.mark.asyncio
    async def test_nearest_first(self, doc_factory):
        index = InMemoryVectorIndex(
            [
                (doc_factory("x", "x"), [1.0, 0.0]),
                (doc_factory("y", "y"), [0.0, 1.0]),
                (doc_factory("xy", "xy"), [1.0, 1.0]),
            ]
        )
        hits = await index.query([1.0, 0.0], limit=3)

        assert [h.id for h in hits] == ["x", "xy", "y"]
        assert hits[0].distance == pytest.approx(0.0, abs=1e-6)
        assert hits[2].distance == pytest.approx(1.0, abs=1e-6)
        assert hits[0].document.title == "x"

    @pytest.mark.asyncio
    async def test_limit_and_filter(self, doc_factory):
        index = InMemoryVectorIndex(
            [
                (doc_factory("a#0", "a", logical_id="a"), [1.0, 0.0]),
                (doc_factory("a#1", "a", logical_id="a"), [0.9, 0.1]),
                (doc_factory("b", "b", url="https://wiki.example.com/pages/55"), [1.0, 0.0]),
            ]
        )
        assert len(await index.query([1.0, 0.0], limit=1)) == 1
        by_parent = await index.query([1.0, 0.0], limit=10, filter={"logical_id": "a"})
        assert {h.id for h in by_parent} == {"a#0", "a#1"}
        by_url = await index.query([1.0, 0.0], limit=10, filter={"url_id": "55"})
        assert [h.id for h in by_url] == ["b"]

    @pytest.mark.asyncio
    async def test_empty_index(self):
        assert await InMemoryVectorIndex().query([1.0], limit=5) == []


class TestInMemoryLexicalIndex:
    @pytest.mark.asyncio
    async def test_cold_until_initialized(self, corpus):
        index = InMemoryLexicalIndex(corpus)
        assert not index.is_ready()
        with pytest.raises(BackendUnavailableError):
            await index.query("教室", 10)

        await index.initialize()
        assert index.is_ready()

    @pytest.mark.asyncio
    async def test_only_matching_documents_returned(self, corpus):
        index = InMemoryLexicalIndex(corpus)
        await index.initialize()

        hits = await index.query("退会", 10)

        assert [h.id for h in hits] == ["d-member-withdraw"]
        assert hits[0].score > 0

    @pytest.mark.asyncio
    async def test_keyword_inside_longer_word(self, corpus):
        index = InMemoryLexicalIndex(corpus)
        await index.initialize()

        ids = [h.id for h in await index.query("削除", 50)]
        assert "d-class-delete" in ids
        assert "d-job-delete" in ids
        assert "d-member-withdraw" not in ids

    @pytest.mark.asyncio
    async def test_ids_only_mode(self, corpus):
        index = InMemoryLexicalIndex(corpus, include_documents=False)
        await index.initialize()
        hits = await index.query("教室", 3)
        assert len(hits) == 3
        assert all(h.document is None for h in hits)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, corpus):
        index = InMemoryLexicalIndex(corpus)
        await index.initialize()
        first = await index.query("教室", 5)
        await index.initialize()
        assert [h.id for h in await index.query("教室", 5)] == [h.id for h in first]


class TestInMemoryMetadataStore:
    @pytest.mark.asyncio
    async def test_batch_get_skips_unknown(self, corpus):
        store = InMemoryMetadataStore(corpus)
        found = await store.batch_get(["d-class-list", "missing"])
        assert list(found) == ["d-class-list"]

    @pytest.mark.asyncio
    async def test_find_by_title_is_case_and_width_insensitive(self, doc_factory):
        store = InMemoryMetadataStore([doc_factory("api", "API Error 一覧")])
        assert [d.id for d in await store.find_by_title("ａｐｉ error", 5)] == ["api"]
        assert await store.find_by_title("", 5) == []


def test_qdrant_filter_builder():
    assert build_filter(None) is None
    assert build_filter({}) is None

    qfilter = build_filter({"logical_id": "d-copy"})
    assert len(qfilter.must) == 1
    assert qfilter.must[0].key == "logical_id"
    assert qfilter.must[0].match.value == "d-copy"


class TestQdrantVectorIndex:
    @pytest.mark.asyncio
    async def test_scores_become_distances(self):
        client = AsyncMock()
        client.query_points.return_value = SimpleNamespace(
            points=[
                SimpleNamespace(
                    id="p1",
                    score=0.8,
                    payload={"title": "教室削除機能", "content": "本文", "labels": "教室,削除"},
                )
            ]
        )
        index = QdrantVectorIndex(client, "wiki", query_vector_name="content")

        hits = await index.query([0.1, 0.2], limit=5, filter={"logical_id": "p1"})

        assert hits[0].id == "p1"
        assert hits[0].distance == pytest.approx(0.2)
        assert hits[0].document.labels == frozenset({"教室", "削除"})
        kwargs = client.query_points.call_args.kwargs
        assert kwargs["collection_name"] == "wiki"
        assert kwargs["using"] == "content"
        assert kwargs["limit"] == 5
        assert kwargs["query_filter"].must[0].key == "logical_id"

    @pytest.mark.asyncio
    async def test_client_errors_become_backend_errors(self):
        client = AsyncMock()
        client.query_points.side_effect = ConnectionError("refused")
        index = QdrantVectorIndex(client, "wiki")

        with pytest.raises(BackendUnavailableError):
            await index.query([0.1], limit=5)
