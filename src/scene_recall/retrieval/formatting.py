"""
Rendering of selected memories into an injectable text block.

Memories are laid out in three temporal buckets (old, mid, recent) by
their position in the chat, chronologically within each bucket, and the
whole block is kept inside a token budget.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from scene_recall.config import DEFAULT_CURRENT_SCENE_SIZE, DEFAULT_LEADING_UP_SIZE
from scene_recall.models import CharacterState, Memory, MessageRange, Relationship, SEQUENCE_STRIDE
from scene_recall.retrieval.selection import estimate_tokens

logger = logging.getLogger(__name__)

OPEN_TAG = "<scene_memory>"
CLOSE_TAG = "</scene_memory>"

OLD_HEADER = "## The Story So Far"
MID_HEADER = "## Leading Up To This Moment"
RECENT_HEADER = "## Current Scene"

# (minimum gap in messages, marker), largest first
GAP_MARKERS = (
    (500, "...Much later..."),
    (100, "...Later..."),
    (15, "..."),
)
MAX_MARKER = max((marker for _, marker in GAP_MARKERS), key=len)


@dataclass
class MemoryBuckets:
    old: List[Memory] = field(default_factory=list)
    mid: List[Memory] = field(default_factory=list)
    recent: List[Memory] = field(default_factory=list)


@dataclass
class RelationshipSummary:
    character: str
    trust: int = 5
    tension: int = 0
    type: str = "acquaintance"


@dataclass
class EmotionalInfo:
    emotion: str = "neutral"
    from_messages: Optional[MessageRange] = None

    @classmethod
    def from_state(cls, state: Optional[CharacterState]) -> "EmotionalInfo":
        if state is None:
            return cls()
        return cls(emotion=state.current_emotion, from_messages=state.emotion_from_messages)


def get_memory_position(memory: Memory) -> float:
    """Where a memory sits in the chat: mean source message, else sequence / 1000, else 0."""
    if memory.message_ids:
        return sum(memory.message_ids) / len(memory.message_ids)
    if memory.sequence is not None:
        return memory.sequence / SEQUENCE_STRIDE
    return 0


def assign_memories_to_buckets(
    memories: Sequence[Memory],
    chat_length: int,
    current_scene_size: int = DEFAULT_CURRENT_SCENE_SIZE,
    leading_up_size: int = DEFAULT_LEADING_UP_SIZE,
) -> MemoryBuckets:
    """
    Split memories into old / mid / recent by position.

    recent: position >= chat_length - current_scene_size
    mid:    chat_length - leading_up_size <= position < recent threshold
    old:    everything earlier

    With chat_length 0 everything is recent. Each bucket is sorted by
    sequence.
    """
    buckets = MemoryBuckets()
    if not memories:
        return buckets

    if chat_length <= 0:
        buckets.recent = sorted(memories, key=lambda m: m.effective_sequence)
        return buckets

    recent_threshold = chat_length - current_scene_size
    mid_threshold = chat_length - leading_up_size

    for memory in memories:
        position = get_memory_position(memory)
        if position >= recent_threshold:
            buckets.recent.append(memory)
        elif position >= mid_threshold:
            buckets.mid.append(memory)
        else:
            buckets.old.append(memory)

    for bucket in (buckets.old, buckets.mid, buckets.recent):
        bucket.sort(key=lambda m: m.effective_sequence)
    return buckets


def get_relationship_context(
    relationships: Sequence[Relationship],
    pov_character: str,
    active_characters: Sequence[str],
) -> List[RelationshipSummary]:
    """
    Relationships between the POV character and other characters in the scene.

    One entry per counterpart; the first relationship found wins.
    """
    if not relationships or not pov_character:
        return []

    active = {name.lower() for name in active_characters if name.lower() != pov_character.lower()}
    seen = set()
    relevant = []
    for relationship in relationships:
        other = relationship.other(pov_character)
        if other is None or other.lower() not in active or other.lower() in seen:
            continue
        seen.add(other.lower())
        relevant.append(
            RelationshipSummary(
                character=other,
                trust=relationship.trust_level,
                tension=relationship.tension_level,
                type=relationship.relationship_type,
            )
        )
    return relevant


def gap_marker(gap: float) -> Optional[str]:
    for minimum, marker in GAP_MARKERS:
        if gap >= minimum:
            return marker
    return None


def format_memory_line(memory: Memory) -> str:
    """e.g. "#42 [★★★] [Secret] Kira hid the letter"."""
    stars = "★" * memory.importance
    secret = "[Secret] " if memory.is_secret else ""
    label = f"#{min(memory.message_ids)} " if memory.message_ids else ""
    return f"{label}[{stars}] {secret}{memory.summary}"


def format_emotion_line(info: Optional[EmotionalInfo]) -> Optional[str]:
    if info is None or not info.emotion or info.emotion == "neutral":
        return None
    line = f"Emotional state: {info.emotion}"
    if info.from_messages is not None:
        low, high = info.from_messages.min, info.from_messages.max
        line += f" (as of msg #{low})" if low == high else f" (as of msgs #{low}-{high})"
    return line


def format_relationship_line(rel: RelationshipSummary) -> str:
    if rel.trust >= 7:
        trust = "high trust"
    elif rel.trust <= 3:
        trust = "low trust"
    else:
        trust = "moderate trust"

    if rel.tension >= 7:
        description = f"{trust}, high tension"
    elif rel.tension >= 4:
        description = f"{trust}, some tension"
    else:
        description = trust
    return f"- {rel.character}: {rel.type or 'acquaintance'} ({description})"


def _bucket_lines(memories: Sequence[Memory], with_gaps: bool) -> List[str]:
    lines = []
    previous = None
    for memory in memories:
        position = get_memory_position(memory)
        if with_gaps and previous is not None:
            marker = gap_marker(position - previous)
            if marker:
                lines.append(marker)
        lines.append(format_memory_line(memory))
        previous = position
    return lines


def _scene_annotations(
    header_name: str,
    present_characters: Sequence[str],
    emotional_info: Optional[EmotionalInfo],
    relationships: Sequence[RelationshipSummary],
) -> List[str]:
    lines = []
    if header_name and header_name != "Scene":
        lines.append(f"Perspective: {header_name}")
    if present_characters:
        lines.append(f"Present: {', '.join(present_characters)}")
    emotion = format_emotion_line(emotional_info)
    if emotion:
        lines.append(emotion)
    if relationships:
        if lines:
            lines.append("")
        lines.append("Relationships with present characters:")
        lines.extend(format_relationship_line(rel) for rel in relationships)
    return lines


def _render(
    buckets: MemoryBuckets,
    chat_length: Optional[int],
    annotations: List[str],
) -> str:
    lines = [OPEN_TAG]
    if chat_length is not None:
        lines.append(f"(Current chat has #{chat_length} messages)")

    if buckets.old:
        lines.extend(["", OLD_HEADER, *_bucket_lines(buckets.old, with_gaps=True)])
    if buckets.mid:
        lines.extend(["", MID_HEADER, *_bucket_lines(buckets.mid, with_gaps=False)])
    if buckets.recent or annotations:
        lines.extend(["", RECENT_HEADER, *annotations])
        if buckets.recent and annotations:
            lines.append("")
        lines.extend(_bucket_lines(buckets.recent, with_gaps=False))

    lines.append(CLOSE_TAG)
    return "\n".join(lines)


def format_context_for_injection(
    memories: Sequence[Memory],
    chat_length: int,
    token_budget: int,
    relationships: Sequence[RelationshipSummary] = (),
    emotional_info: Optional[EmotionalInfo] = None,
    present_characters: Sequence[str] = (),
    header_name: str = "Scene",
    current_scene_size: int = DEFAULT_CURRENT_SCENE_SIZE,
    leading_up_size: int = DEFAULT_LEADING_UP_SIZE,
) -> str:
    """
    Render memories as a ``<scene_memory>`` block within ``token_budget``.

    Memories are admitted in the given (score) order while they fit, then
    laid out chronologically by bucket. When the budget cannot even hold
    the scene annotations they are left out, and when it cannot hold the
    chat-length line either, the bare wrapper is returned.

    Args:
        memories: Selected memories, best first
        chat_length: Number of messages in the chat
        token_budget: Token ceiling for the rendered block
        relationships: From get_relationship_context()
        emotional_info: POV character's current emotion
        present_characters: Characters in the current scene
        header_name: Name shown as the remembering perspective ("Scene" = none)
        current_scene_size: Messages counted as the current scene
        leading_up_size: Messages counted as leading up to it

    Returns:
        The block to inject into the prompt
    """
    empty = MemoryBuckets()
    annotations = _scene_annotations(header_name, present_characters, emotional_info, relationships)

    if estimate_tokens(_render(empty, chat_length, annotations)) > token_budget:
        annotations = []
        if estimate_tokens(_render(empty, chat_length, annotations)) > token_budget:
            logger.debug(f"Token budget {token_budget} only fits the bare wrapper")
            return _render(empty, None, [])

    # Worst case: every section header shows up in addition to the frame.
    headers = "\n".join(["", OLD_HEADER, "", MID_HEADER, "", RECENT_HEADER, ""])
    reserved = estimate_tokens(_render(empty, chat_length, annotations) + headers)
    available = token_budget - reserved

    included: List[Memory] = []
    used = 0
    for memory in memories:
        cost = estimate_tokens(f"{MAX_MARKER}\n{format_memory_line(memory)}\n")
        if used + cost > available:
            break
        included.append(memory)
        used += cost

    def render(selected: Sequence[Memory]) -> str:
        buckets = assign_memories_to_buckets(
            selected, chat_length, current_scene_size, leading_up_size
        )
        return _render(buckets, chat_length, annotations)

    text = render(included)
    while included and estimate_tokens(text) > token_budget:
        included.pop()
        text = render(included)

    if len(included) < len(memories):
        logger.debug(
            f"Formatter kept {len(included)}/{len(memories)} memories "
            f"within {token_budget} tokens"
        )
    return text
