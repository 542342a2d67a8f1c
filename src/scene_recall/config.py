"""
Configuration for scene-recall.

ScoringParameters is the immutable bundle handed to the scorer (and shipped
to the scoring worker). RecallSettings is the full tunable surface, loaded
from keyword arguments or ``SCENE_RECALL_*`` environment variables.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Configuration constants
CHARS_PER_TOKEN = 3.5
DEFAULT_PRE_FILTER_TOKENS = 24000
DEFAULT_FINAL_TOKENS = 12000
DEFAULT_CURRENT_SCENE_SIZE = 100
DEFAULT_LEADING_UP_SIZE = 500
DEFAULT_EMBEDDING_CACHE_SIZE = 500
DEFAULT_WORKER_TIMEOUT_SECONDS = 10.0


class ScoringParameters(BaseModel):
    """
    Tunable constants of the relevance score.

    Attributes:
        base_lambda: Decay rate before importance scaling (lambda = base / importance^2)
        importance_5_floor: Minimum base score for importance-5 memories
        vector_similarity_threshold: Cosine similarity below which no bonus applies
        vector_similarity_weight: Maximum vector bonus (reached at similarity 1.0)
        keyword_match_weight: Multiplier applied to the raw BM25 score
    """

    model_config = ConfigDict(frozen=True)

    base_lambda: float = Field(default=0.05, ge=0.0)
    importance_5_floor: float = Field(default=5.0, ge=0.0)
    vector_similarity_threshold: float = Field(default=0.5, ge=0.0, lt=1.0)
    vector_similarity_weight: float = Field(default=15.0, ge=0.0)
    keyword_match_weight: float = Field(default=1.0, ge=0.0)


class RecallSettings(BaseSettings):
    """All retrieval settings, overridable via SCENE_RECALL_<FIELD> env vars."""

    model_config = SettingsConfigDict(env_prefix="SCENE_RECALL_", extra="ignore")

    # Scoring
    base_lambda: float = Field(default=0.05, ge=0.0)
    importance_5_floor: float = Field(default=5.0, ge=0.0)
    vector_similarity_threshold: float = Field(default=0.5, ge=0.0, lt=1.0)
    vector_similarity_weight: float = Field(default=15.0, ge=0.0)
    keyword_match_weight: float = Field(default=1.0, ge=0.0)

    # Budgets
    pre_filter_tokens: int = Field(default=DEFAULT_PRE_FILTER_TOKENS, ge=0)
    final_tokens: int = Field(default=DEFAULT_FINAL_TOKENS, ge=0)
    smart_retrieval_enabled: bool = True

    # Formatting
    current_scene_size: int = Field(default=DEFAULT_CURRENT_SCENE_SIZE, ge=0)
    leading_up_size: int = Field(default=DEFAULT_LEADING_UP_SIZE, ge=0)

    # Execution
    embedding_cache_size: int = Field(default=DEFAULT_EMBEDDING_CACHE_SIZE, ge=1)
    embedding_batch_size: int = Field(default=5, ge=1)
    worker_timeout_seconds: float = Field(default=DEFAULT_WORKER_TIMEOUT_SECONDS, gt=0.0)
    offload_scoring: bool = True

    # Query context
    user_message_window: int = Field(default=3, ge=1)
    entity_window_size: int = Field(default=10, ge=1)
    embedding_window_size: int = Field(default=5, ge=1)
    recency_decay_factor: float = Field(default=0.09, ge=0.0)
    top_entities_count: int = Field(default=5, ge=0)
    entity_boost_weight: float = Field(default=5.0, ge=0.0)
    embedding_chunk_size: int = Field(default=1000, ge=1)

    def scoring_parameters(self) -> ScoringParameters:
        return ScoringParameters(
            base_lambda=self.base_lambda,
            importance_5_floor=self.importance_5_floor,
            vector_similarity_threshold=self.vector_similarity_threshold,
            vector_similarity_weight=self.vector_similarity_weight,
            keyword_match_weight=self.keyword_match_weight,
        )
