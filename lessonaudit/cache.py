"""
Semantic Response Cache

Reuses a previous scoring response when a new prompt is semantically
near-identical to one already answered (cosine similarity >= 0.95).
Entries older than the TTL are treated as misses.

Cache failures never fail an analysis: a failed lookup is a miss and a
failed store is logged.

Usage:
    cache = SemanticCache(store, embedder)
    cached = await cache.get(prompt)
    if cached is None:
        result = await score(...)
        await cache.put(prompt, result)
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

from lessonaudit.config import settings
from lessonaudit.vectors import Embedder, VectorStore

logger = logging.getLogger(__name__)

COLLECTION = "semantic_cache"


class SemanticCache:
    """Similarity-keyed response cache with TTL and hit/miss stats."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        threshold: Optional[float] = None,
        ttl_seconds: int = 24 * 3600,
        collection: str = COLLECTION,
    ):
        self._store = store
        self._embedder = embedder
        self._threshold = settings.SEMANTIC_CACHE_THRESHOLD if threshold is None else threshold
        self._ttl = ttl_seconds
        self._collection = collection
        self._hits = 0
        self._misses = 0

    async def get(self, query_text: str) -> Optional[dict]:
        """Return the cached response for a near-identical query, if fresh."""
        try:
            embedding = await self._embedder.embed(query_text)
            hit = await self._store.lookup(self._collection, embedding, self._threshold)
        except Exception as e:
            logger.warning("Semantic cache lookup failed: %s", e, extra={"error": str(e)})
            self._misses += 1
            return None

        if hit is None:
            self._misses += 1
            return None

        cached_at = hit.payload.get("cached_at", 0.0)
        if time.time() - cached_at > self._ttl:
            self._misses += 1
            return None

        self._hits += 1
        logger.info("Semantic cache hit (score %.3f)", hit.score)
        return {**hit.payload.get("response", {}), "_cached": True}

    async def put(self, query_text: str, response: dict) -> None:
        """Store a response. Failures are logged, not raised."""
        try:
            embedding = await self._embedder.embed(query_text)
            await self._store.upsert(
                self._collection,
                uuid.uuid4().hex,
                embedding,
                {"query": query_text[:500], "response": response, "cached_at": time.time()},
            )
        except Exception as e:
            logger.warning("Semantic cache store failed: %s", e, extra={"error": str(e)})

    async def fetch_or_compute(
        self, query_text: str, compute: Callable[[], Awaitable[dict]],
    ) -> dict:
        cached = await self.get(query_text)
        if cached is not None:
            return cached
        response = await compute()
        await self.put(query_text, response)
        return response

    @property
    def stats(self) -> dict:
        """Cache hit/miss statistics."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
        }
