"""
Text embedding protocol for scene-recall.

Embeddings turn memory summaries and the current scene into dense vectors
so retrieval can reward semantic overlap, not just shared keywords.
"""

from typing import List, Protocol

from typing_extensions import runtime_checkable


@runtime_checkable
class TextEmbedding(Protocol):
    """
    Protocol for text embedding providers.

    All implementations must:

    1. Return vectors of a fixed length (``dimension``) for the same model
    2. Distinguish documents (memory summaries) from queries (scene text)
       where the model cares; otherwise treat them identically
    3. Implement async methods, since remote providers do network I/O
    4. Raise on failure; the embedding cache turns failures into None

    Example:
        >>> embedder = OllamaEmbedding(model="nomic-embed-text")
        >>> vector = await embedder.embed_query("The tavern falls silent")
        >>> len(vector) == embedder.dimension
        True
    """

    @property
    def dimension(self) -> int:
        """
        Vector dimension produced by this embedder.

        Memory embeddings and the scene embedding must share it; mismatched
        vectors contribute no similarity bonus.
        """
        ...

    @property
    def model_name(self) -> str:
        """Model name or identifier (e.g., "intfloat/e5-small-v2")."""
        ...

    @property
    def optimal_chunk_size(self) -> int:
        """Longest query text (in characters) worth sending to this model."""
        ...

    async def embed_document(self, text: str) -> List[float]:
        """
        Generate embedding for a memory summary.

        Raises:
            ValueError: If text is empty
        """
        ...

    async def embed_query(self, text: str) -> List[float]:
        """
        Generate embedding for the current scene.

        Raises:
            ValueError: If text is empty
        """
        ...

    async def embed_documents(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        """
        Generate embeddings for multiple summaries (same order as input).

        Raises:
            ValueError: If any text is empty
        """
        ...
