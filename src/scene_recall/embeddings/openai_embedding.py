"""OpenAI embedding adapter for scene-recall."""

import logging
import os
from typing import List, Optional

logger = logging.getLogger(__name__)

KNOWN_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

DEFAULT_CHUNK_SIZE = 1000


class OpenAIEmbedding:
    """
    Embedding adapter for OpenAI and OpenAI-compatible embedding APIs.

    Works with the official API as well as OpenRouter, LM Studio, vLLM and
    similar servers exposing ``/v1/embeddings``.

    Example:
        >>> embedder = OpenAIEmbedding(model="text-embedding-3-small", dimensions=512)
        >>> vector = await embedder.embed_query("The duel at dawn")
        >>> len(vector)
        512
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        """
        Initialize OpenAI embedder.

        Args:
            model: Embedding model name (default: text-embedding-3-small)
            api_key: API key (None = use OPENAI_API_KEY env var)
            base_url: Custom endpoint for OpenAI-compatible servers
            dimensions: Requested output dimension (3-series models only)
            timeout: Request timeout in seconds
            max_retries: Number of retry attempts for failed requests

        Raises:
            ValueError: If the model is unknown and dimensions is not given
        """
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "openai is required for OpenAIEmbedding. "
                "Install with: pip install scene-recall[embeddings-openai]"
            ) from e

        if dimensions is None and model not in KNOWN_DIMENSIONS:
            raise ValueError(f"Unknown embedding model {model!r}: pass dimensions explicitly")

        self._model = model
        self._dimensions = dimensions
        self._dimension = dimensions or KNOWN_DIMENSIONS[model]
        self._client = AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

        logger.info(f"OpenAI embedder initialized: {model} ({self._dimension} dimensions)")

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def optimal_chunk_size(self) -> int:
        return DEFAULT_CHUNK_SIZE

    async def _create(self, payload):
        kwargs = {"model": self._model, "input": payload}
        if self._dimensions is not None:
            kwargs["dimensions"] = self._dimensions
        response = await self._client.embeddings.create(**kwargs)
        return [item.embedding for item in response.data]

    async def embed_document(self, text: str) -> List[float]:
        """
        Generate embedding for a memory summary.

        Raises:
            ValueError: If text is empty
            openai.OpenAIError: If API request fails
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        return (await self._create(text))[0]

    async def embed_query(self, text: str) -> List[float]:
        """OpenAI models make no document/query distinction."""
        return await self.embed_document(text)

    async def embed_documents(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        """
        Generate embeddings for multiple summaries in one request.

        batch_size is accepted for protocol compatibility; the API batches
        internally.
        """
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise ValueError("Cannot embed empty texts in batch")
        return await self._create(texts)
