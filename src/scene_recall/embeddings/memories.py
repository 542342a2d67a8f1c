import asyncio
import logging
from typing import List, Optional, Sequence

from scene_recall.embeddings.protocol import TextEmbedding
from scene_recall.models import Memory

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5


def memory_embedding_text(memory: Memory) -> str:
    """Summary prefixed with its tags, e.g. "[combat, betrayal] Kira stabbed Aldo"."""
    if memory.tags:
        return f"[{', '.join(memory.tags)}] {memory.summary}"
    return memory.summary


async def _embed_one(memory: Memory, provider: TextEmbedding) -> Optional[List[float]]:
    try:
        return await provider.embed_document(memory_embedding_text(memory))
    except Exception as e:
        logger.warning(f"Failed to embed memory {memory.id}: {e}")
        return None


async def embed_memories(
    memories: Sequence[Memory],
    provider: TextEmbedding,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """
    Compute missing embeddings in place.

    Memories that already carry an embedding, or have no summary, are
    skipped. At most ``batch_size`` provider calls are in flight at once.

    Returns:
        Number of memories that received an embedding
    """
    pending = [m for m in memories if m.summary and m.embedding is None]
    if not pending:
        return 0

    embedded = 0
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        vectors = await asyncio.gather(*(_embed_one(memory, provider) for memory in batch))
        for memory, vector in zip(batch, vectors):
            if vector:
                memory.embedding = vector
                embedded += 1

    logger.info(f"Embedded {embedded}/{len(pending)} memories with {provider.model_name}")
    return embedded
