import math
from typing import List, Sequence

from scene_recall.config import CHARS_PER_TOKEN
from scene_recall.models import Memory


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per 3.5 characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def slice_to_token_budget(memories: Sequence[Memory], budget: int) -> List[Memory]:
    """
    Take memories in order while their summaries fit in ``budget`` tokens.

    Stops at the first memory that would overflow; later, smaller memories
    are not considered, so the result is always a prefix of the input.
    """
    if budget <= 0:
        return []

    selected = []
    used = 0
    for memory in memories:
        cost = estimate_tokens(memory.summary)
        if used + cost > budget:
            break
        selected.append(memory)
        used += cost
    return selected


def total_tokens(memories: Sequence[Memory]) -> int:
    return sum(estimate_tokens(memory.summary) for memory in memories)


def average_tokens(memories: Sequence[Memory]) -> float:
    if not memories:
        return 0.0
    return total_tokens(memories) / len(memories)
