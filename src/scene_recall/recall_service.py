import logging
from typing import Callable, List, Mapping, Optional, Sequence

from scene_recall.config import RecallSettings
from scene_recall.embeddings import EmbeddingCache, TextEmbedding, embed_memories
from scene_recall.models import CharacterState, ChatTurn, Memory, Relationship, RetrievalContext
from scene_recall.pov import PovContext, get_pov_context
from scene_recall.retrieval import MemoryReranker, RetrievalPipeline, RetrievalResult
from scene_recall.scoring import ScoringService, ScoringWorker

logger = logging.getLogger(__name__)

PENDING_MESSAGE_PREFIX = "[User is about to say]: "


def get_active_characters(
    character_name: str, user_name: str = "", group_members: Sequence[str] = ()
) -> List[str]:
    """Main character, user, then any other group members, without duplicates."""
    characters: List[str] = []
    for name in (character_name, user_name, *group_members):
        if name and name not in characters:
            characters.append(name)
    return characters


def get_hidden_memories(turns: Sequence[ChatTurn], memories: Sequence[Memory]) -> List[Memory]:
    """
    Memories whose earliest source message is hidden from the prompt.

    Memories of still-visible messages are already in context and need no
    injection.
    """
    hidden = []
    for memory in memories:
        if not memory.message_ids:
            continue
        first = min(memory.message_ids)
        if 0 <= first < len(turns) and turns[first].is_system:
            hidden.append(memory)
    return hidden


class RecallService:
    def __init__(
        self,
        pipeline: RetrievalPipeline,
        settings: Optional[RecallSettings] = None,
    ):
        self.pipeline = pipeline
        self.settings = settings or pipeline.settings

    @classmethod
    def from_settings(
        cls,
        settings: Optional[RecallSettings] = None,
        embedder: Optional[TextEmbedding] = None,
        reranker: Optional[MemoryReranker] = None,
        worker_factory: Optional[Callable[[], ScoringWorker]] = None,
    ) -> "RecallService":
        settings = settings or RecallSettings()
        scoring = ScoringService(
            timeout=settings.worker_timeout_seconds,
            worker_factory=worker_factory,
            offload=settings.offload_scoring,
        )
        cache = EmbeddingCache(capacity=settings.embedding_cache_size)
        pipeline = RetrievalPipeline(scoring, cache, embedder=embedder, reranker=reranker, settings=settings)
        return cls(pipeline, settings)

    def build_context(
        self,
        turns: Sequence[ChatTurn],
        pov: PovContext,
        character_name: str,
        active_characters: Sequence[str],
        pending_user_message: str = "",
    ) -> RetrievalContext:
        visible = [turn for turn in turns if not turn.is_system]

        recent_context = "\n".join(turn.content for turn in visible)
        if pending_user_message:
            recent_context += f"\n\n{PENDING_MESSAGE_PREFIX}{pending_user_message}"

        window = self.settings.user_message_window
        user_messages = [turn.content for turn in visible if turn.is_user][-window:]
        if pending_user_message:
            user_messages = [*user_messages, pending_user_message][-window:]

        primary = pov.pov_characters[0] if pov.is_group_chat and pov.pov_characters else character_name

        return RetrievalContext(
            recent_context=recent_context,
            user_messages="\n".join(user_messages),
            chat_length=len(turns),
            pov_characters=pov.pov_characters,
            active_characters=list(active_characters),
            primary_character=primary,
            header_name=primary if pov.is_group_chat else "Scene",
            pre_filter_tokens=self.settings.pre_filter_tokens,
            final_tokens=self.settings.final_tokens,
            smart_retrieval_enabled=self.settings.smart_retrieval_enabled,
        )

    async def retrieve(
        self,
        turns: Sequence[ChatTurn],
        memories: Sequence[Memory],
        character_name: str,
        user_name: str = "",
        character_states: Optional[Mapping[str, CharacterState]] = None,
        relationships: Sequence[Relationship] = (),
        is_group_chat: bool = False,
        group_members: Sequence[str] = (),
        pending_user_message: str = "",
    ) -> RetrievalResult:
        """
        Select memories to inject for the next reply.

        Only memories of hidden messages are eligible; visible messages are
        already in the prompt.

        Args:
            turns: Full chat transcript, oldest first
            memories: Every stored memory of the chat
            character_name: Responding character
            user_name: User's persona name
            character_states: Character states keyed by name
            relationships: Known relationships
            is_group_chat: Group chat (POV = responding character) or narrator mode
            group_members: Other characters of a group chat
            pending_user_message: Message the user is about to send, if known

        Returns:
            RetrievalResult; empty context when nothing qualifies
        """
        if not turns or not memories:
            logger.debug("Nothing to retrieve: empty chat or no memories")
            return RetrievalResult()

        try:
            states = character_states or {}
            eligible = get_hidden_memories(turns, memories)
            if not eligible:
                logger.debug("No memories from hidden messages yet")
                return RetrievalResult()

            if self.pipeline.embedder is not None:
                await embed_memories(
                    eligible, self.pipeline.embedder, self.settings.embedding_batch_size
                )

            pov = get_pov_context(
                turns, memories, states, character_name, user_name, is_group_chat
            )
            active = get_active_characters(character_name, user_name, group_members)
            ctx = self.build_context(turns, pov, character_name, active, pending_user_message)

            result = await self.pipeline.retrieve(eligible, ctx, states, relationships)
            logger.info(
                f"Retrieval: total={len(memories)}, hidden={len(eligible)}, "
                f"pov={result.accessible_count}, selected={len(result.memories)}"
            )
            return result

        except Exception as e:
            logger.error(f"Failed to retrieve memories: {e}", exc_info=True)
            raise

    def reset(self) -> None:
        """Forget per-conversation state: cached embeddings and the scoring worker."""
        self.pipeline.embedding_cache.clear()
        self.pipeline.scoring.shutdown()
        logger.info("Recall state reset")

    def close(self) -> None:
        self.pipeline.scoring.shutdown()

    async def aclose(self) -> None:
        """Stop the scoring worker and release the embedder's HTTP client, if it has one."""
        self.close()
        aclose = getattr(self.pipeline.embedder, "aclose", None)
        if aclose is not None:
            await aclose()
            logger.debug("Embedder client closed")

    def get_metrics(self) -> dict:
        metrics = {
            **self.pipeline.scoring.get_metrics(),
            **self.pipeline.embedding_cache.get_stats(),
        }
        reranker_metrics = getattr(self.pipeline.reranker, "get_metrics", None)
        if reranker_metrics is not None:
            metrics.update(reranker_metrics())
        return metrics
