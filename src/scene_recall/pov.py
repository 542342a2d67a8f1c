"""
Point-of-view access control.

A character can only recall what they saw, what they took part in (unless
it was a secret), or what they were explicitly told about.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from scene_recall.models import CharacterState, ChatTurn, Memory

logger = logging.getLogger(__name__)

CharacterStates = Mapping[str, CharacterState]


@dataclass
class PovContext:
    pov_characters: List[str] = field(default_factory=list)
    is_group_chat: bool = False


def find_character_state(states: CharacterStates, name: str) -> Optional[CharacterState]:
    """Look up a character state by name, ignoring case."""
    if name in states:
        return states[name]
    lowered = name.lower()
    for key, state in states.items():
        if key.lower() == lowered:
            return state
    return None


def filter_memories_by_pov(
    memories: Sequence[Memory],
    pov_characters: Sequence[str],
    character_states: Optional[CharacterStates] = None,
) -> List[Memory]:
    """
    Keep the memories any POV character could know about.

    A memory is visible when a POV character witnessed it, was involved in
    it and it is not secret, or lists its id among their known events.
    Names compare case-insensitively. An empty POV set sees everything.

    Args:
        memories: Candidate memories
        pov_characters: Characters whose knowledge bounds the result
        character_states: Character states keyed by name

    Returns:
        Visible memories, in input order
    """
    if not memories:
        return []
    if not pov_characters:
        return list(memories)

    states = character_states or {}
    known_event_ids = set()
    for name in pov_characters:
        state = find_character_state(states, name)
        if state is not None:
            known_event_ids.update(state.known_events)

    pov_lower = {name.lower() for name in pov_characters}

    def visible(memory: Memory) -> bool:
        if any(w.lower() in pov_lower for w in memory.witnesses):
            return True
        if not memory.is_secret and any(c.lower() in pov_lower for c in memory.characters_involved):
            return True
        return memory.id in known_event_ids

    return [memory for memory in memories if visible(memory)]


def known_character_names(
    memories: Iterable[Memory],
    character_states: CharacterStates,
    extra_names: Iterable[str] = (),
) -> Dict[str, str]:
    """Every character name the engine knows, keyed by lowercase name."""
    names: Dict[str, str] = {}
    for memory in memories:
        for name in [*memory.characters_involved, *memory.witnesses]:
            names.setdefault(name.lower(), name)
    for name in character_states:
        names[name.lower()] = name
    for name in extra_names:
        if name:
            names.setdefault(name.lower(), name)
    return names


def detect_present_characters(
    turns: Sequence[ChatTurn],
    memories: Iterable[Memory],
    character_states: Optional[CharacterStates] = None,
    context_names: Iterable[str] = (),
    message_count: int = 2,
) -> List[str]:
    """
    Characters present in the last few visible messages.

    Message senders count as present, as does any known character whose
    name appears in a message. Names come back in their stored casing where
    one is known.

    Args:
        turns: Chat transcript, oldest first
        memories: Memories used to learn character names
        character_states: Character states keyed by name
        context_names: Host-provided names (user, main character)
        message_count: Number of trailing non-system messages to scan
    """
    states = character_states or {}
    context_names = [name for name in context_names if name]
    known = known_character_names(memories, states, context_names)

    recent = [turn for turn in turns if not turn.is_system][-message_count:] if message_count > 0 else []

    present: Dict[str, None] = {}
    for turn in recent:
        text = turn.content.lower()
        if turn.name:
            present.setdefault(turn.name.lower(), None)
            known.setdefault(turn.name.lower(), turn.name)
        for lowered in known:
            if lowered in text:
                present.setdefault(lowered, None)

    result = [known.get(lowered, lowered) for lowered in present]

    logger.debug(f"Detected present characters: {', '.join(result)}")
    return result


def get_pov_context(
    turns: Sequence[ChatTurn],
    memories: Iterable[Memory],
    character_states: Optional[CharacterStates],
    character_name: str,
    user_name: str = "",
    is_group_chat: bool = False,
) -> PovContext:
    """
    Decide whose knowledge bounds retrieval.

    In a group chat the responding character is the POV. In a one-on-one
    (narrator) chat every character present in the last two messages is,
    falling back to the main character and the user.
    """
    if is_group_chat:
        logger.debug(f"Group chat mode: POV character = {character_name}")
        return PovContext(pov_characters=[character_name], is_group_chat=True)

    present = detect_present_characters(
        turns, memories, character_states, context_names=[user_name, character_name]
    )
    if not present:
        present = [name for name in (character_name, user_name) if name]

    logger.debug(f"Narrator mode: POV characters = {', '.join(present)}")
    return PovContext(pov_characters=present, is_group_chat=False)
