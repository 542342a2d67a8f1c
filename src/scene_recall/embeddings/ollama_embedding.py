"""Ollama embedding adapter for scene-recall."""

import logging
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

OLLAMA_CHUNK_SIZE = 800


class OllamaEmbedding:
    """
    Embedding adapter for a local or remote Ollama server.

    Calls ``POST {base_url}/api/embeddings`` with ``{"model", "prompt"}`` and
    reads the ``embedding`` field of the response.

    Example:
        >>> embedder = OllamaEmbedding(model="nomic-embed-text", dimension=768)
        >>> vector = await embedder.embed_query("Who lit the beacon?")
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dimension: int = 768,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Ollama embedder.

        Args:
            model: Ollama embedding model tag
            base_url: Server URL (trailing slash optional)
            dimension: Output dimension of the model
            timeout: Request timeout in seconds
            client: Shared HTTP client (default: one owned by this adapter)
        """
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._dimension = dimension
        self._client = client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"Ollama embedder initialized: {model} at {self._base_url}")

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def optimal_chunk_size(self) -> int:
        return OLLAMA_CHUNK_SIZE

    async def _embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        response = await self._client.post(
            f"{self._base_url}/api/embeddings",
            json={"model": self._model, "prompt": text.strip()},
        )
        response.raise_for_status()
        embedding = response.json().get("embedding")
        if not embedding:
            raise ValueError(f"Ollama returned no embedding for model {self._model}")
        return embedding

    async def embed_document(self, text: str) -> List[float]:
        """
        Raises:
            ValueError: If text is empty or the server returns no vector
            httpx.HTTPError: If the request fails
        """
        return await self._embed(text)

    async def embed_query(self, text: str) -> List[float]:
        return await self._embed(text)

    async def embed_documents(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        """Ollama embeds one prompt per request; texts are sent in order."""
        return [await self._embed(text) for text in texts]

    async def aclose(self) -> None:
        await self._client.aclose()
