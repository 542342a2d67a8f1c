"""Local E5 embedding adapter (sentence-transformers)."""

import asyncio
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

E5_CHUNK_SIZE = 500


class E5Embedding:
    """
    E5 model family embedding adapter, running locally.

    E5 models expect "passage: " before stored text and "query: " before
    search text; this adapter adds them. Encoding runs in a worker thread so
    the event loop keeps serving the chat while a model is busy.

    Supported E5 models:
    - intfloat/e5-small-v2 (384 dims) - Default, fast on CPU
    - intfloat/e5-base-v2 (768 dims)
    - intfloat/multilingual-e5-small (384 dims) - Non-English chats

    Example:
        >>> embedder = E5Embedding(device="cpu")
        >>> vector = await embedder.embed_query("Who stole the amulet?")
        >>> len(vector)
        384
    """

    def __init__(
        self,
        model_name: str = "intfloat/e5-small-v2",
        device: Optional[str] = None,
        normalize_embeddings: bool = True,
        cache_folder: Optional[str] = None,
    ):
        """
        Initialize E5 embedder.

        Args:
            model_name: HuggingFace model identifier (default: e5-small-v2)
            device: Device for computation ("cuda", "cpu", or None for auto)
            normalize_embeddings: L2 normalize vectors
            cache_folder: Directory for model cache (None = default ~/.cache)
        """
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for E5Embedding. "
                "Install with: pip install scene-recall[embeddings-transformers]"
            ) from e

        self._model_name = model_name
        self._normalize = normalize_embeddings

        logger.info(f"Loading E5 model: {model_name}")
        self._model = SentenceTransformer(model_name, device=device, cache_folder=cache_folder)
        self._dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Model loaded: {model_name} ({self._dimension} dimensions)")

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def optimal_chunk_size(self) -> int:
        return E5_CHUNK_SIZE

    async def _encode(self, texts, batch_size: int = 32):
        return await asyncio.to_thread(
            self._model.encode,
            texts,
            normalize_embeddings=self._normalize,
            show_progress_bar=False,
            batch_size=batch_size,
        )

    async def embed_document(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        embedding = await self._encode(f"passage: {text}")
        return embedding.tolist()

    async def embed_query(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        embedding = await self._encode(f"query: {text}")
        return embedding.tolist()

    async def embed_documents(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise ValueError("Cannot embed empty texts in batch")

        embeddings = await self._encode([f"passage: {text}" for text in texts], batch_size)
        return embeddings.tolist()
