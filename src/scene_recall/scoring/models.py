from dataclasses import dataclass, field
from typing import List, Optional

from scene_recall.config import ScoringParameters
from scene_recall.models import Memory


@dataclass
class ScoreBreakdown:
    """Every component of a memory's relevance score."""

    total: float
    base: float
    base_after_floor: float
    recency_penalty: float  # lift applied by the importance-5 floor
    vector_bonus: float
    vector_similarity: float
    bm25_bonus: float
    bm25_score: float
    distance: int
    importance: int


@dataclass
class ScoredMemory:
    memory: Memory
    score: float
    breakdown: ScoreBreakdown


@dataclass
class ScoringRequest:
    """
    Query half of a scoring call.

    The memory set travels separately so the worker can keep it between
    calls.
    """

    chat_length: int
    context_embedding: Optional[List[float]] = None
    query_tokens: List[str] = field(default_factory=list)
    params: ScoringParameters = field(default_factory=ScoringParameters)
    limit: Optional[int] = None
