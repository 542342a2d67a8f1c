"""Tests for the two-stage retrieval pipeline."""

from unittest.mock import AsyncMock, Mock

import pytest

from scene_recall.config import RecallSettings
from scene_recall.embeddings import EmbeddingCache
from scene_recall.models import CharacterState, Memory, Relationship, RetrievalContext
from scene_recall.retrieval import RetrievalPipeline
from scene_recall.retrieval.selection import estimate_tokens
from scene_recall.scoring import ScoringService


def make_memories(count, summary_len=35, **kwargs):
    return [
        Memory(id=f"m{i}", summary=f"{i:03d}" + "x" * (summary_len - 3), message_ids=[i], **kwargs)
        for i in range(count)
    ]


@pytest.fixture
def scoring():
    """In-process scoring, no worker."""
    return ScoringService(offload=False)


@pytest.fixture
def mock_embedder():
    embedder = Mock()
    embedder.optimal_chunk_size = 1000
    embedder.embed_query = AsyncMock(return_value=[1.0, 0.0])
    return embedder


@pytest.fixture
def mock_reranker():
    reranker = Mock()
    reranker.rerank = AsyncMock(return_value='{"selected": [5, 2]}')
    return reranker


@pytest.fixture
def ctx():
    return RetrievalContext(
        recent_context="Kira: where is the map?\nSam: in the tower",
        user_messages="in the tower",
        chat_length=100,
        pov_characters=["Kira"],
        active_characters=["Kira", "Sam"],
        primary_character="Kira",
        pre_filter_tokens=1000,
        final_tokens=30,
        smart_retrieval_enabled=True,
    )


@pytest.mark.asyncio
async def test_empty_input_makes_no_calls(mock_embedder, mock_reranker, ctx):
    """Nothing to retrieve means no scoring, embedding or LLM work."""
    scoring = Mock()
    scoring.score = AsyncMock()
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), mock_embedder, mock_reranker)

    result = await pipeline.retrieve([], ctx)

    assert result.memories == []
    assert result.context == ""
    scoring.score.assert_not_awaited()
    mock_embedder.embed_query.assert_not_awaited()
    mock_reranker.rerank.assert_not_awaited()


@pytest.mark.asyncio
async def test_pov_filter_applies(scoring, ctx):
    visible = Memory(id="visible", summary="Kira found the map", witnesses=["Kira"], message_ids=[10])
    hidden = Memory(id="hidden", summary="Aldo burned a letter", witnesses=["Aldo"], message_ids=[20])
    pipeline = RetrievalPipeline(scoring, EmbeddingCache())

    result = await pipeline.retrieve([visible, hidden], ctx.model_copy(update={"final_tokens": 1000}))

    assert [m.id for m in result.memories] == ["visible"]
    assert result.accessible_count == 1
    assert not result.used_pov_fallback
    assert "Kira found the map" in result.context


@pytest.mark.asyncio
async def test_pov_fallback_when_nothing_accessible(scoring, ctx):
    """If the POV filter empties the set, all eligible memories are used."""
    memories = make_memories(3, witnesses=["Mira"])
    pipeline = RetrievalPipeline(scoring, EmbeddingCache())

    result = await pipeline.retrieve(memories, ctx.model_copy(update={"final_tokens": 1000}))

    assert result.used_pov_fallback
    assert result.accessible_count == 3
    assert len(result.memories) == 3


@pytest.mark.asyncio
async def test_simple_mode_respects_final_budget(scoring, ctx):
    pipeline = RetrievalPipeline(scoring, EmbeddingCache())

    selected = await pipeline.select_relevant_memories(
        make_memories(10), ctx.model_copy(update={"smart_retrieval_enabled": False})
    )

    # 35 chars = 10 tokens each, 30-token budget
    assert len(selected) == 3


@pytest.mark.asyncio
async def test_pre_filter_budget_caps_candidates(scoring, ctx):
    pipeline = RetrievalPipeline(scoring, EmbeddingCache())

    stage_one = await pipeline.score_and_pre_filter(
        make_memories(10), ctx.model_copy(update={"pre_filter_tokens": 50})
    )

    assert len(stage_one.memories) == 5
    assert stage_one.bm25_tokens


@pytest.mark.asyncio
async def test_tiny_budget_with_many_memories(scoring, ctx):
    """100 memories and a small budget still yield a context within budget."""
    memories = make_memories(100, summary_len=100, witnesses=["Kira"])
    small = ctx.model_copy(update={"final_tokens": 120, "smart_retrieval_enabled": False})

    result = await RetrievalPipeline(scoring, EmbeddingCache()).retrieve(memories, small)

    assert 0 < len(result.memories) < 100
    assert estimate_tokens(result.context) <= 120


@pytest.mark.asyncio
async def test_scene_embedding_is_cached(scoring, mock_embedder, ctx):
    memories = make_memories(3, witnesses=["Kira"])
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), embedder=mock_embedder)

    await pipeline.retrieve(memories, ctx)
    await pipeline.retrieve(memories, ctx)

    mock_embedder.embed_query.assert_awaited_once()


@pytest.mark.asyncio
async def test_vector_similarity_changes_ranking(scoring, mock_embedder, ctx):
    """With equal decay, the memory closer to the scene ranks first."""
    near = Memory(id="near", summary="The map in the attic", message_ids=[50], embedding=[1.0, 0.0])
    far = Memory(id="far", summary="A song at the fair", message_ids=[50], embedding=[0.0, 1.0])
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), embedder=mock_embedder)

    stage_one = await pipeline.score_and_pre_filter(
        [far, near], ctx.model_copy(update={"user_messages": "hello"})
    )

    assert [m.id for m in stage_one.memories] == ["near", "far"]


@pytest.mark.asyncio
async def test_embedder_failure_scores_without_vectors(scoring, mock_embedder, ctx):
    mock_embedder.embed_query.side_effect = RuntimeError("embedding server down")
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), embedder=mock_embedder)

    selected = await pipeline.select_relevant_memories(make_memories(3), ctx)

    assert len(selected) == 3


@pytest.mark.asyncio
async def test_smart_mode_uses_reranker_choice(scoring, mock_reranker, ctx):
    memories = make_memories(10)
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), reranker=mock_reranker)
    candidates = (await pipeline.score_and_pre_filter(memories, ctx)).memories

    result = await pipeline.retrieve(memories, ctx.model_copy(update={"pov_characters": []}))

    assert result.smart_used
    assert [m.id for m in result.memories] == [candidates[1].id, candidates[4].id]
    pov_label = mock_reranker.rerank.await_args.args[2]
    assert pov_label == "Kira"


@pytest.mark.asyncio
async def test_smart_mode_falls_back_on_bad_answer(scoring, mock_reranker, ctx):
    mock_reranker.rerank.return_value = "I would pick the second one"
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), reranker=mock_reranker)

    result = await pipeline.retrieve(make_memories(10), ctx.model_copy(update={"pov_characters": []}))

    assert not result.smart_used
    assert result.smart_fallback_reason == "parse_error"
    assert len(result.memories) == 3


@pytest.mark.asyncio
async def test_smart_mode_skipped_when_everything_fits(scoring, mock_reranker, ctx):
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), reranker=mock_reranker)

    result = await pipeline.retrieve(make_memories(2), ctx.model_copy(update={"pov_characters": []}))

    assert len(result.memories) == 2
    mock_reranker.rerank.assert_not_awaited()


@pytest.mark.asyncio
async def test_context_includes_emotion_and_relationships(scoring, ctx):
    states = {"Kira": CharacterState(name="Kira", current_emotion="anxious")}
    relationships = [Relationship(character_a="Kira", character_b="Sam", trust_level=9)]
    pipeline = RetrievalPipeline(scoring, EmbeddingCache(), settings=RecallSettings())

    result = await pipeline.retrieve(
        make_memories(1, witnesses=["Kira"]),
        ctx.model_copy(update={"final_tokens": 1000}),
        states,
        relationships,
    )

    assert "Emotional state: anxious" in result.context
    assert "- Sam: acquaintance (high trust)" in result.context
    assert "Present: Kira, Sam" in result.context
