"""
Tests for the vector-similarity collaborators: in-memory store,
semantic cache and curriculum matcher.
"""

from __future__ import annotations

import time

import pytest

from lessonaudit.cache import SemanticCache
from lessonaudit.errors import ExternalCallFailure
from lessonaudit.vectors import (
    cosine_similarity,
    CurriculumMatcher,
    Embedder,
    GeminiEmbedder,
    InMemoryVectorStore,
)


class TableEmbedder(Embedder):
    """Looks texts up in a fixed table; unknown texts fail like a dead endpoint."""

    def __init__(self, table):
        self.table = table
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if text not in self.table:
            raise ExternalCallFailure("embed", "connection refused")
        return self.table[text]


TABLE = {
    "aula de frações": [1.0, 0.0, 0.0],
    "aula de frações!": [0.99, 0.05, 0.0],
    "aula de história": [0.0, 1.0, 0.0],
    "competência: números racionais": [0.9, 0.1, 0.0],
    "competência: fontes históricas": [0.0, 0.9, 0.1],
}


class TestCosine:

    def test_identical(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1, 0], [0, 1]) == 0.0

    def test_degenerate(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_search_ranked_and_thresholded(self):
        store = InMemoryVectorStore()
        await store.upsert("c", "a", [1.0, 0.0], {"name": "a"})
        await store.upsert("c", "b", [0.7, 0.7], {"name": "b"})
        await store.upsert("c", "z", [0.0, 1.0], {"name": "z"})

        hits = await store.search("c", [1.0, 0.0], limit=10, threshold=0.5)
        assert [h.id for h in hits] == ["a", "b"]
        assert hits[0].score >= hits[1].score

    @pytest.mark.asyncio
    async def test_upsert_replaces(self):
        store = InMemoryVectorStore()
        await store.upsert("c", "a", [1.0, 0.0], {"v": 1})
        await store.upsert("c", "a", [1.0, 0.0], {"v": 2})
        assert store.count("c") == 1
        hit = await store.lookup("c", [1.0, 0.0], threshold=0.9)
        assert hit.payload == {"v": 2}

    @pytest.mark.asyncio
    async def test_lookup_miss(self):
        store = InMemoryVectorStore()
        assert await store.lookup("empty", [1.0], threshold=0.5) is None


class TestSemanticCache:

    @pytest.mark.asyncio
    async def test_near_identical_hit(self):
        cache = SemanticCache(InMemoryVectorStore(), TableEmbedder(TABLE))
        await cache.put("aula de frações", {"overall_score": 80})
        cached = await cache.get("aula de frações!")
        assert cached == {"overall_score": 80, "_cached": True}
        assert cache.stats["hits"] == 1

    @pytest.mark.asyncio
    async def test_different_query_misses(self):
        cache = SemanticCache(InMemoryVectorStore(), TableEmbedder(TABLE))
        await cache.put("aula de frações", {"overall_score": 80})
        assert await cache.get("aula de história") is None
        assert cache.stats == {"hits": 0, "misses": 1, "hit_rate": 0.0}

    @pytest.mark.asyncio
    async def test_expired_entry_misses(self):
        store = InMemoryVectorStore()
        cache = SemanticCache(store, TableEmbedder(TABLE), ttl_seconds=60)
        await store.upsert("semantic_cache", "old", TABLE["aula de frações"], {
            "response": {"overall_score": 80}, "cached_at": time.time() - 3600,
        })
        assert await cache.get("aula de frações") is None

    @pytest.mark.asyncio
    async def test_embedding_failure_is_a_miss(self):
        cache = SemanticCache(InMemoryVectorStore(), TableEmbedder({}))
        assert await cache.get("anything") is None
        assert cache.stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_store_failure_not_raised(self):
        store = InMemoryVectorStore()
        cache = SemanticCache(store, TableEmbedder({}))
        await cache.put("anything", {"overall_score": 1})
        assert store.count("semantic_cache") == 0

    @pytest.mark.asyncio
    async def test_fetch_or_compute(self):
        cache = SemanticCache(InMemoryVectorStore(), TableEmbedder(TABLE))
        computed = []

        async def compute():
            computed.append(1)
            return {"overall_score": 70}

        first = await cache.fetch_or_compute("aula de frações", compute)
        second = await cache.fetch_or_compute("aula de frações", compute)
        assert first == {"overall_score": 70}
        assert second["_cached"] is True
        assert len(computed) == 1


class TestCurriculumMatcher:

    @pytest.mark.asyncio
    async def test_match(self):
        matcher = CurriculumMatcher(
            InMemoryVectorStore(), TableEmbedder(TABLE), threshold=0.7, limit=5,
        )
        await matcher.index("EF06MA07", "competência: números racionais", {"code": "EF06MA07"})
        await matcher.index("EF06HI02", "competência: fontes históricas", {"code": "EF06HI02"})

        hits = await matcher.match("aula de frações")
        assert [h.id for h in hits] == ["EF06MA07"]
        assert hits[0].payload["description"] == "competência: números racionais"

    @pytest.mark.asyncio
    async def test_failure_is_external(self):
        matcher = CurriculumMatcher(InMemoryVectorStore(), TableEmbedder({}))
        with pytest.raises(ExternalCallFailure):
            await matcher.match("aula")


class TestGeminiEmbedder:

    @pytest.mark.asyncio
    async def test_delegates_to_provider(self):
        class FakeProvider:
            async def embed(self, text):
                return [float(len(text)), 1.0]

        assert await GeminiEmbedder(FakeProvider()).embed("abc") == [3.0, 1.0]
