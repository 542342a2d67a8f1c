"""Test that adapters satisfy the TextEmbedding protocol."""

import pytest

from scene_recall.embeddings import OllamaEmbedding, TextEmbedding


def test_ollama_is_protocol():
    """OllamaEmbedding implements TextEmbedding protocol."""
    embedder = OllamaEmbedding()
    assert isinstance(embedder, TextEmbedding)
    assert embedder.dimension == 768


def test_openai_is_protocol(monkeypatch):
    """OpenAIEmbedding implements TextEmbedding protocol."""
    pytest.importorskip("openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key-for-testing")

    from scene_recall.embeddings.openai_embedding import OpenAIEmbedding

    embedder = OpenAIEmbedding(model="text-embedding-3-small", dimensions=768)
    assert isinstance(embedder, TextEmbedding)
    assert embedder.dimension == 768
    assert embedder.model_name == "text-embedding-3-small"


def test_object_missing_methods_is_not_protocol():
    class HalfEmbedder:
        dimension = 3
        model_name = "half"

        async def embed_query(self, text):
            return [0.0, 0.0, 0.0]

    assert not isinstance(HalfEmbedder(), TextEmbedding)
