"""
scene-recall: point-of-view aware long-term memory retrieval for conversational agents.

Core components:
- scoring: forgetfulness curve + vector similarity + BM25, run in a background worker
- embeddings: embedding protocol, adapters and LRU cache
- retrieval: two-stage token-budgeted selection and context formatting
- pov: who may know what
- models: Memory, CharacterState, Relationship, ChatTurn, RetrievalContext
"""

__version__ = "0.1.0"

from scene_recall.models import (
    CharacterState,
    ChatTurn,
    Memory,
    MessageRange,
    Relationship,
    RetrievalContext,
)
from scene_recall.config import RecallSettings, ScoringParameters
from scene_recall.recall_service import RecallService

__all__ = [
    "__version__",
    # Models
    "CharacterState",
    "ChatTurn",
    "Memory",
    "MessageRange",
    "Relationship",
    "RetrievalContext",
    # Configuration
    "RecallSettings",
    "ScoringParameters",
    "RecallService",
]
