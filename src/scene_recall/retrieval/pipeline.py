"""
Two-stage retrieval: score and pre-filter, then pick the final set.

Stage one ranks every accessible memory (forgetfulness curve, vector
similarity, BM25) and keeps the best within ``pre_filter_tokens``. Stage two
either takes the best of those within ``final_tokens`` or lets an LLM
re-ranker choose, falling back to the former when the re-ranker's answer
is unusable.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from scene_recall.config import RecallSettings
from scene_recall.embeddings.cache import EmbeddingCache
from scene_recall.embeddings.protocol import TextEmbedding
from scene_recall.models import CharacterState, Memory, Relationship, RetrievalContext
from scene_recall.pov import filter_memories_by_pov, find_character_state
from scene_recall.retrieval.formatting import (
    EmotionalInfo,
    format_context_for_injection,
    get_relationship_context,
)
from scene_recall.retrieval.query_context import (
    build_bm25_tokens,
    build_embedding_query,
    extract_query_context,
    parse_recent_messages,
)
from scene_recall.retrieval.selection import average_tokens, slice_to_token_budget
from scene_recall.retrieval.smart import (
    MemoryReranker,
    SmartRejection,
    SmartSelection,
    select_smart,
)
from scene_recall.scoring.models import ScoringRequest
from scene_recall.scoring.service import ScoringService

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    memories: List[Memory] = field(default_factory=list)
    context: str = ""
    accessible_count: int = 0
    pre_filtered_count: int = 0
    used_pov_fallback: bool = False
    smart_used: bool = False
    smart_fallback_reason: Optional[str] = None


@dataclass
class StageOneResult:
    memories: List[Memory]
    embedding_query: str = ""
    bm25_tokens: List[str] = field(default_factory=list)


class RetrievalPipeline:
    """
    Selects and formats the memories to inject for the current turn.

    Example:
        >>> pipeline = RetrievalPipeline(ScoringService(), EmbeddingCache(), embedder=embedder)
        >>> result = await pipeline.retrieve(memories, ctx, character_states, relationships)
        >>> print(result.context)
    """

    def __init__(
        self,
        scoring: ScoringService,
        embedding_cache: EmbeddingCache,
        embedder: Optional[TextEmbedding] = None,
        reranker: Optional[MemoryReranker] = None,
        settings: Optional[RecallSettings] = None,
    ):
        """
        Initialize the retrieval pipeline.

        Args:
            scoring: Scoring service (worker or in-process)
            embedding_cache: Cache for scene embeddings
            embedder: Embedding provider (None = no vector bonus)
            reranker: LLM re-ranker for smart mode (None = simple mode only)
            settings: Tunables (default: RecallSettings())
        """
        self.scoring = scoring
        self.embedding_cache = embedding_cache
        self.embedder = embedder
        self.reranker = reranker
        self.settings = settings or RecallSettings()

    async def retrieve(
        self,
        memories: Sequence[Memory],
        ctx: RetrievalContext,
        character_states: Optional[Mapping[str, CharacterState]] = None,
        relationships: Sequence[Relationship] = (),
    ) -> RetrievalResult:
        """
        Filter by POV, select and format memories for injection.

        Args:
            memories: Eligible memories (e.g. those from hidden messages)
            ctx: Retrieval context for this turn
            character_states: Character states keyed by name
            relationships: Known relationships

        Returns:
            RetrievalResult; ``context`` is empty when nothing was selected
        """
        if not memories:
            logger.debug("No memories available for retrieval")
            return RetrievalResult()

        states = character_states or {}
        accessible = filter_memories_by_pov(memories, ctx.pov_characters, states)
        used_fallback = False
        if not accessible:
            logger.info("POV filter returned 0 results, using all eligible memories as fallback")
            accessible = list(memories)
            used_fallback = True

        logger.debug(
            f"Retrieval filter: eligible={len(memories)}, pov={len(accessible)}, "
            f"chars=[{', '.join(ctx.pov_characters)}]"
        )

        result = RetrievalResult(accessible_count=len(accessible), used_pov_fallback=used_fallback)
        selected = await self._select(accessible, ctx, result)
        if not selected:
            logger.info("No relevant memories found")
            return result

        primary_state = find_character_state(states, ctx.primary_character) if ctx.primary_character else None
        result.memories = selected
        result.context = format_context_for_injection(
            selected,
            chat_length=ctx.chat_length,
            token_budget=ctx.final_tokens,
            relationships=get_relationship_context(
                relationships, ctx.primary_character, ctx.active_characters
            ),
            emotional_info=EmotionalInfo.from_state(primary_state),
            present_characters=ctx.active_characters,
            header_name=ctx.header_name,
            current_scene_size=self.settings.current_scene_size,
            leading_up_size=self.settings.leading_up_size,
        )
        logger.info(f"Selected {len(selected)} memories for injection")
        return result

    async def select_relevant_memories(
        self, memories: Sequence[Memory], ctx: RetrievalContext
    ) -> List[Memory]:
        """Run both stages over already-accessible memories; best first."""
        return await self._select(memories, ctx, RetrievalResult())

    async def score_and_pre_filter(
        self, memories: Sequence[Memory], ctx: RetrievalContext
    ) -> StageOneResult:
        """Stage one: rank memories and keep the best within ``pre_filter_tokens``."""
        if not memories:
            return StageOneResult(memories=[])

        s = self.settings
        recent = parse_recent_messages(ctx.recent_context, s.entity_window_size)
        entities = extract_query_context(
            recent,
            ctx.active_characters,
            entity_window_size=s.entity_window_size,
            recency_decay_factor=s.recency_decay_factor,
            top_entities_count=s.top_entities_count,
        )
        user_lines = parse_recent_messages(ctx.user_messages, s.user_message_window)
        chunk_size = self.embedder.optimal_chunk_size if self.embedder else s.embedding_chunk_size
        embedding_query = build_embedding_query(
            user_lines, entities, chunk_size=chunk_size, embedding_window_size=s.embedding_window_size
        )
        bm25_tokens = build_bm25_tokens(ctx.user_messages, entities, s.entity_boost_weight)

        context_embedding = None
        if self.embedder is not None and embedding_query.strip():
            context_embedding = await self.embedding_cache.get_or_compute(
                embedding_query, self.embedder.embed_query
            )

        request = ScoringRequest(
            chat_length=ctx.chat_length,
            context_embedding=context_embedding,
            query_tokens=bm25_tokens,
            params=s.scoring_parameters(),
        )
        scored = await self.scoring.score(memories, request)
        kept = slice_to_token_budget([item.memory for item in scored], ctx.pre_filter_tokens)

        logger.debug(
            f"Stage 1: scored {len(scored)}, kept {len(kept)} within "
            f"{ctx.pre_filter_tokens} tokens"
        )
        return StageOneResult(memories=kept, embedding_query=embedding_query, bm25_tokens=bm25_tokens)

    async def _select(
        self, memories: Sequence[Memory], ctx: RetrievalContext, result: RetrievalResult
    ) -> List[Memory]:
        if not memories:
            return []

        stage_one = await self.score_and_pre_filter(memories, ctx)
        candidates = stage_one.memories
        result.pre_filtered_count = len(candidates)
        if not candidates:
            return []

        if ctx.smart_retrieval_enabled and self.reranker is not None:
            target = max(1, int(ctx.final_tokens // max(average_tokens(candidates), 1)))
            if len(candidates) > target:
                pov_label = ctx.primary_character or ctx.header_name
                outcome = await select_smart(
                    candidates, self.reranker, ctx.recent_context, pov_label, target
                )
                match outcome:
                    case SmartSelection(memories=chosen):
                        result.smart_used = True
                        return slice_to_token_budget(chosen, ctx.final_tokens)
                    case SmartRejection(reason=reason):
                        logger.info(f"Smart retrieval fell back to simple mode: {reason}")
                        result.smart_fallback_reason = reason

        return slice_to_token_budget(candidates, ctx.final_tokens)
