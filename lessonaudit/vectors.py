"""
Vector similarity collaborators.

Two uses share one store interface:
  - the semantic cache (strict cosine threshold, see cache.py)
  - the curriculum matcher (competencies relevant to a lesson)

The in-memory store keeps everything in process and ranks by cosine
similarity. Production deployments plug a real vector database in
behind the same VectorStore interface.
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from lessonaudit.config import settings
from lessonaudit.errors import ExternalCallFailure

logger = logging.getLogger(__name__)

MAX_RESULTS = 50


@dataclass(frozen=True)
class SearchHit:
    """A single similarity match."""
    id: str
    score: float
    payload: dict = field(default_factory=dict)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class Embedder(ABC):
    """Turns text into a vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...


class GeminiEmbedder(Embedder):
    """Embeddings through the Gemini provider's embedding model."""

    def __init__(self, provider: Optional[Any] = None):
        if provider is None:
            from lessonaudit.llm.gemini import GeminiProvider
            provider = GeminiProvider()
        self._provider = provider

    async def embed(self, text: str) -> list[float]:
        return await self._provider.embed(text)


class VectorStore(ABC):
    """Similarity search over named collections."""

    @abstractmethod
    async def search(
        self,
        collection: str,
        embedding: Sequence[float],
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SearchHit]:
        """Hits with score >= threshold, best first."""
        ...

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        point_id: str,
        embedding: Sequence[float],
        payload: Optional[dict] = None,
    ) -> None:
        ...

    async def lookup(
        self, collection: str, embedding: Sequence[float], threshold: float,
    ) -> Optional[SearchHit]:
        """Best hit at or above the threshold, if any."""
        hits = await self.search(collection, embedding, limit=1, threshold=threshold)
        return hits[0] if hits else None


class InMemoryVectorStore(VectorStore):
    """Process-local store ranked by cosine similarity."""

    def __init__(self):
        self._collections: dict[str, dict[str, tuple[list[float], dict]]] = {}
        self._lock = asyncio.Lock()

    async def search(
        self,
        collection: str,
        embedding: Sequence[float],
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SearchHit]:
        limit = min(limit, MAX_RESULTS)
        async with self._lock:
            points = list(self._collections.get(collection, {}).items())

        hits = [
            SearchHit(id=point_id, score=cosine_similarity(embedding, vector), payload=payload)
            for point_id, (vector, payload) in points
        ]
        hits = [h for h in hits if h.score >= threshold]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def upsert(
        self,
        collection: str,
        point_id: str,
        embedding: Sequence[float],
        payload: Optional[dict] = None,
    ) -> None:
        async with self._lock:
            points = self._collections.setdefault(collection, {})
            points[point_id] = (list(embedding), dict(payload or {}))

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))


class CurriculumMatcher:
    """
    Finds curriculum competencies related to a lesson.

    Competencies are indexed once with `index`; `match` embeds the lesson
    text and returns the closest competencies above the threshold.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        collection: str = "curriculum",
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.collection = collection
        self.threshold = settings.CURRICULUM_MATCH_THRESHOLD if threshold is None else threshold
        self.limit = settings.CURRICULUM_MATCH_LIMIT if limit is None else limit

    async def index(self, competency_id: str, description: str, payload: Optional[dict] = None) -> None:
        embedding = await self.embedder.embed(description)
        await self.store.upsert(
            self.collection,
            competency_id,
            embedding,
            {"description": description, **(payload or {})},
        )

    async def match(self, text: str) -> list[SearchHit]:
        try:
            embedding = await self.embedder.embed(text)
            return await self.store.search(
                self.collection, embedding, limit=self.limit, threshold=self.threshold,
            )
        except ExternalCallFailure:
            raise
        except Exception as e:
            raise ExternalCallFailure("curriculum_match", str(e)) from e
