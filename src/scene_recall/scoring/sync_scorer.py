from typing import List, Sequence

from scene_recall.models import Memory
from scene_recall.scoring.models import ScoredMemory, ScoringRequest
from scene_recall.scoring.vector_math import score_memories


def score_memories_sync(memories: Sequence[Memory], request: ScoringRequest) -> List[ScoredMemory]:
    """Score in the calling thread. The offloaded worker runs exactly this."""
    scored = score_memories(
        memories,
        request.context_embedding,
        request.chat_length,
        request.params,
        request.query_tokens,
    )
    if request.limit is not None:
        scored = scored[: request.limit]
    return scored
