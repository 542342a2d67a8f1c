"""
Relevance scoring for scene-recall.

- vector_math: cosine similarity, forgetfulness decay, tokenizer, BM25
- ScoringService: background worker execution with deadline and respawn
- score_memories_sync: the same scorer, in the calling thread
"""

from scene_recall.scoring.errors import ScoringTimeoutError, ScoringWorkerError
from scene_recall.scoring.models import ScoreBreakdown, ScoredMemory, ScoringRequest
from scene_recall.scoring.service import ScoringService, WorkerState, memory_set_key
from scene_recall.scoring.sync_scorer import score_memories_sync
from scene_recall.scoring.vector_math import (
    calculate_score,
    cosine_similarity,
    forgetfulness_score,
    score_memories,
    tokenize,
)
from scene_recall.scoring.worker import ProcessScoringWorker, ScoringWorker

__all__ = [
    "ScoringTimeoutError",
    "ScoringWorkerError",
    "ScoreBreakdown",
    "ScoredMemory",
    "ScoringRequest",
    "ScoringService",
    "WorkerState",
    "memory_set_key",
    "score_memories_sync",
    "calculate_score",
    "cosine_similarity",
    "forgetfulness_score",
    "score_memories",
    "tokenize",
    "ProcessScoringWorker",
    "ScoringWorker",
]
