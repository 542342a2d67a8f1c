"""
Bounded LRU cache of text embeddings.

Scene text repeats a lot between turns (the same recent messages slide
through the window), so the query embedding is worth remembering. Provider
failures are cached as None: a provider that just failed for a text is not
asked again until the cache is cleared or the entry is evicted.
"""

import logging
from collections import OrderedDict
from typing import Awaitable, Callable, List, Optional

from scene_recall.config import DEFAULT_EMBEDDING_CACHE_SIZE

logger = logging.getLogger(__name__)

Vector = List[float]
EmbeddingProvider = Callable[[str], Awaitable[Optional[Vector]]]

_MISSING = object()


class EmbeddingCache:
    """
    Text -> vector cache with least-recently-used eviction.

    Both hits and inserts make an entry the most recently used; when full,
    the least recently used entry is evicted before a new one is stored.

    Example:
        >>> cache = EmbeddingCache(capacity=500)
        >>> vector = await cache.get_or_compute("The gate creaks open", embedder.embed_query)
        >>> cache.get("The gate creaks open") == vector
        True
    """

    def __init__(self, capacity: int = DEFAULT_EMBEDDING_CACHE_SIZE):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._entries: "OrderedDict[str, Optional[Vector]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return text in self._entries

    def get(self, text: str) -> Optional[Vector]:
        """Cached vector (or cached failure, None); promotes the entry on a hit."""
        value = self._lookup(text)
        return None if value is _MISSING else value

    def put(self, text: str, vector: Optional[Vector]) -> None:
        if text in self._entries:
            self._entries.move_to_end(text)
        elif len(self._entries) >= self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Embedding cache full, evicted: {evicted[:40]!r}")
        self._entries[text] = vector

    async def get_or_compute(self, text: str, provider: EmbeddingProvider) -> Optional[Vector]:
        """
        Return the cached vector for ``text`` or compute and cache it.

        Args:
            text: Text to embed
            provider: Async callable producing the vector (e.g. embedder.embed_query)

        Returns:
            The vector, or None if the provider failed (now or on an earlier call)
        """
        if not text:
            return None

        value = self._lookup(text)
        if value is not _MISSING:
            return value

        try:
            vector = await provider(text)
        except Exception as e:
            logger.warning(f"Embedding provider failed, caching miss: {e}")
            vector = None

        self.put(text, vector)
        return vector

    def clear(self) -> None:
        """Drop every entry (e.g. when the host switches conversation)."""
        self._entries.clear()
        logger.debug("Embedding cache cleared")

    def get_stats(self) -> dict:
        return {
            "embedding_cache_size": len(self._entries),
            "embedding_cache_capacity": self._capacity,
            "embedding_cache_hits": self.hits,
            "embedding_cache_misses": self.misses,
        }

    def _lookup(self, text: str):
        if text in self._entries:
            self.hits += 1
            self._entries.move_to_end(text)
            return self._entries[text]
        self.misses += 1
        return _MISSING
