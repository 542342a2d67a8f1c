"""
Text embedding abstractions for scene-recall.

Provides the embedding protocol, an LRU cache for scene embeddings, and
model-specific adapters:
- OllamaEmbedding: Ollama server over HTTP
- E5Embedding: local E5 models with automatic prefix handling
- OpenAIEmbedding: OpenAI and OpenAI-compatible APIs
"""

from scene_recall.embeddings.cache import EmbeddingCache
from scene_recall.embeddings.memories import embed_memories, memory_embedding_text
from scene_recall.embeddings.ollama_embedding import OllamaEmbedding
from scene_recall.embeddings.protocol import TextEmbedding

__all__ = [
    "EmbeddingCache",
    "OllamaEmbedding",
    "TextEmbedding",
    "embed_memories",
    "memory_embedding_text",
]

# Optional adapters (import only if dependencies available)
try:
    from scene_recall.embeddings.e5_embedding import E5Embedding

    __all__.append("E5Embedding")
except ImportError:
    pass

try:
    from scene_recall.embeddings.openai_embedding import OpenAIEmbedding

    __all__.append("OpenAIEmbedding")
except ImportError:
    pass
