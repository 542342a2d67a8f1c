"""
Memory retrieval for scene-recall.

- RetrievalPipeline: POV filter, scoring pre-filter, final selection, formatting
- smart: LLM re-ranking with fallback to score order
- LLMReranker: re-ranker on a casual-llm provider (optional)
- formatting: temporal buckets and budgeted rendering
- query_context: entity extraction and enriched queries
"""

from scene_recall.retrieval.formatting import (
    EmotionalInfo,
    MemoryBuckets,
    RelationshipSummary,
    assign_memories_to_buckets,
    format_context_for_injection,
    get_memory_position,
    get_relationship_context,
)
from scene_recall.retrieval.pipeline import RetrievalPipeline, RetrievalResult
from scene_recall.retrieval.query_context import (
    QueryEntities,
    build_bm25_tokens,
    build_embedding_query,
    extract_query_context,
    parse_recent_messages,
)
from scene_recall.retrieval.selection import estimate_tokens, slice_to_token_budget
from scene_recall.retrieval.smart import (
    MemoryReranker,
    OpenAIReranker,
    SmartRejection,
    SmartSelection,
    select_smart,
)

__all__ = [
    "EmotionalInfo",
    "MemoryBuckets",
    "RelationshipSummary",
    "assign_memories_to_buckets",
    "format_context_for_injection",
    "get_memory_position",
    "get_relationship_context",
    "RetrievalPipeline",
    "RetrievalResult",
    "QueryEntities",
    "build_bm25_tokens",
    "build_embedding_query",
    "extract_query_context",
    "parse_recent_messages",
    "estimate_tokens",
    "slice_to_token_budget",
    "MemoryReranker",
    "OpenAIReranker",
    "SmartRejection",
    "SmartSelection",
    "select_smart",
]

# Optional re-ranker (import only if casual-llm is available)
try:
    from scene_recall.retrieval.llm_reranker import LLMReranker

    __all__.append("LLMReranker")
except ImportError:
    pass
