"""Tests for filling in missing memory embeddings."""

from unittest.mock import AsyncMock, Mock

import pytest

from scene_recall.embeddings import embed_memories, memory_embedding_text
from scene_recall.models import Memory


@pytest.fixture
def mock_embedder():
    """Embedder returning a vector derived from the text length."""
    embedder = Mock()
    embedder.model_name = "mock-embedder"
    embedder.embed_document = AsyncMock(side_effect=lambda text: [float(len(text)), 1.0])
    return embedder


def test_embedding_text_includes_tags():
    memory = Memory(id="m1", summary="Kira stabbed Aldo", tags=["combat", "betrayal"])
    assert memory_embedding_text(memory) == "[combat, betrayal] Kira stabbed Aldo"


def test_embedding_text_without_tags():
    assert memory_embedding_text(Memory(id="m1", summary="Quiet night")) == "Quiet night"


@pytest.mark.asyncio
async def test_only_missing_embeddings_are_computed(mock_embedder):
    done = Memory(id="done", summary="Already embedded", embedding=[0.5, 0.5])
    todo = Memory(id="todo", summary="Needs a vector")
    blank = Memory(id="blank", summary="")

    count = await embed_memories([done, todo, blank], mock_embedder)

    assert count == 1
    assert done.embedding == [0.5, 0.5]
    assert todo.embedding == [float(len("Needs a vector")), 1.0]
    assert blank.embedding is None
    mock_embedder.embed_document.assert_awaited_once_with("Needs a vector")


@pytest.mark.asyncio
async def test_failures_leave_memory_unembedded(mock_embedder):
    """One failing memory does not stop the others."""

    async def flaky(text):
        if "bad" in text:
            raise RuntimeError("provider error")
        return [1.0, 0.0]

    mock_embedder.embed_document = AsyncMock(side_effect=flaky)
    memories = [
        Memory(id="a", summary="good one"),
        Memory(id="b", summary="bad one"),
        Memory(id="c", summary="good two"),
    ]

    count = await embed_memories(memories, mock_embedder, batch_size=2)

    assert count == 2
    assert memories[1].embedding is None
    assert memories[0].embedding == memories[2].embedding == [1.0, 0.0]


@pytest.mark.asyncio
async def test_all_batches_processed(mock_embedder):
    memories = [Memory(id=f"m{i}", summary=f"memory {i}") for i in range(12)]

    count = await embed_memories(memories, mock_embedder, batch_size=5)

    assert count == 12
    assert mock_embedder.embed_document.await_count == 12


@pytest.mark.asyncio
async def test_nothing_to_do(mock_embedder):
    assert await embed_memories([], mock_embedder) == 0
    mock_embedder.embed_document.assert_not_awaited()
