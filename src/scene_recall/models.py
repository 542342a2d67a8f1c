from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# Sequence keys are derived from the earliest source message, spaced so that
# several memories extracted from the same message keep a stable order.
SEQUENCE_STRIDE = 1000

DEFAULT_IMPORTANCE = 3


class Memory(BaseModel):
    id: str
    summary: str = ""
    importance: int = Field(
        default=DEFAULT_IMPORTANCE, description="1 (trivial) to 5 (critical), clamped on input"
    )
    message_ids: List[int] = Field(
        default_factory=list, description="Source message indices, in chat order"
    )
    sequence: Optional[int] = Field(
        default=None, description="Monotonic chronological key (earliest message * 1000)"
    )
    characters_involved: List[str] = Field(default_factory=list)
    witnesses: List[str] = Field(default_factory=list)
    is_secret: bool = False
    embedding: Optional[List[float]] = None
    tags: List[str] = Field(default_factory=list)
    event_type: Optional[str] = None

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value):
        if value is None:
            return DEFAULT_IMPORTANCE
        try:
            value = round(float(value))
        except (TypeError, ValueError):
            return DEFAULT_IMPORTANCE
        return max(1, min(5, value))

    @field_validator("summary", mode="before")
    @classmethod
    def _default_summary(cls, value):
        return value or ""

    @field_validator("message_ids", "characters_involved", "witnesses", "tags", mode="before")
    @classmethod
    def _default_list(cls, value):
        return value or []

    @property
    def effective_sequence(self) -> int:
        """Chronological key, derived from the earliest message when unset."""
        if self.sequence is not None:
            return self.sequence
        if self.message_ids:
            return min(self.message_ids) * SEQUENCE_STRIDE
        return 0

    @property
    def last_message_id(self) -> int:
        return max(self.message_ids) if self.message_ids else 0


class MessageRange(BaseModel):
    min: int
    max: int


class CharacterState(BaseModel):
    name: str
    current_emotion: str = "neutral"
    emotion_intensity: int = Field(default=5, ge=0, le=10)
    emotion_from_messages: Optional[MessageRange] = None
    known_events: List[str] = Field(default_factory=list)


class Relationship(BaseModel):
    character_a: str
    character_b: str
    trust_level: int = Field(default=5, ge=0, le=10)
    tension_level: int = Field(default=0, ge=0, le=10)
    relationship_type: str = "acquaintance"

    def other(self, name: str) -> Optional[str]:
        """Return the counterpart of ``name`` in this relationship, if any."""
        lowered = name.lower()
        if self.character_a.lower() == lowered:
            return self.character_b
        if self.character_b.lower() == lowered:
            return self.character_a
        return None


class ChatTurn(BaseModel):
    """One message of the host transcript."""

    content: str = ""
    name: str = ""
    is_user: bool = False
    is_system: bool = Field(
        default=False, description="Hidden from the prompt window (already summarized)"
    )


class RetrievalContext(BaseModel):
    recent_context: str = ""
    user_messages: str = Field(default="", description="Last few user utterances")
    chat_length: int = Field(default=0, ge=0)
    pov_characters: List[str] = Field(default_factory=list)
    active_characters: List[str] = Field(default_factory=list)
    primary_character: str = ""
    header_name: str = "Scene"
    pre_filter_tokens: int = Field(default=24000, ge=0)
    final_tokens: int = Field(default=12000, ge=0)
    smart_retrieval_enabled: bool = False

    @field_validator("user_messages")
    @classmethod
    def _cap_user_messages(cls, value: str) -> str:
        return value[-1000:]
