"""
Query enrichment from recent chat.

Pulls likely entities (names, places, quoted phrases) out of the last few
messages, rule-based, and uses them to build a recency-weighted embedding
query and a boosted BM25 token list. Latin and Cyrillic text are supported.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from scene_recall.scoring.vector_math import tokenize

DEFAULT_ENTITY_WINDOW_SIZE = 10
DEFAULT_EMBEDDING_WINDOW_SIZE = 5
DEFAULT_RECENCY_DECAY_FACTOR = 0.09
DEFAULT_TOP_ENTITIES_COUNT = 5
DEFAULT_ENTITY_BOOST_WEIGHT = 5.0
DEFAULT_CHUNK_SIZE = 1000

CHARACTER_BOOST = 3.0

LATIN_STARTERS = frozenset(
    """
    The This That Then There These Those When Where What Which While Who Why
    How Here Now Just But And Yet Still Also Only Even Well Much Very Some
    """.split()
)

CYRILLIC_STARTERS = frozenset(
    """
    После Когда Потом Затем Тогда Здесь Там Это Эта Этот Эти Что Как Где Куда
    Почему Зачем Кто Чей Какой Какая Какое Пока Если Хотя Также Ещё Уже Вот Вон
    """.split()
)

_LATIN_WORD_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")
_CYRILLIC_WORD_RE = re.compile(r"(?<![а-яёА-ЯЁ])[А-ЯЁ][а-яё]{2,}(?![а-яёА-ЯЁ])")
_QUOTE_RE = re.compile(r'"([^"]+)"|«([^»]+)»')


@dataclass
class QueryEntities:
    entities: List[str] = field(default_factory=list)
    weights: Dict[str, float] = field(default_factory=dict)


def extract_entities(text: str) -> List[str]:
    """Capitalized words (3+ letters, not sentence starters) and short quoted phrases."""
    if not text:
        return []

    entities = [word for word in _LATIN_WORD_RE.findall(text) if word not in LATIN_STARTERS]
    entities.extend(
        word for word in _CYRILLIC_WORD_RE.findall(text) if word not in CYRILLIC_STARTERS
    )
    for latin, cyrillic in _QUOTE_RE.findall(text):
        content = (latin or cyrillic).strip()
        if 3 <= len(content) <= 50:
            entities.append(content)
    return entities


def parse_recent_messages(recent_context: str, count: int = 10) -> List[str]:
    """Last ``count`` non-empty lines of the context, newest first."""
    if not recent_context:
        return []
    lines = [line for line in recent_context.split("\n") if line.strip()]
    return list(reversed(lines[-count:])) if count > 0 else []


def extract_query_context(
    messages: Sequence[str],
    active_characters: Sequence[str] = (),
    entity_window_size: int = DEFAULT_ENTITY_WINDOW_SIZE,
    recency_decay_factor: float = DEFAULT_RECENCY_DECAY_FACTOR,
    top_entities_count: int = DEFAULT_TOP_ENTITIES_COUNT,
) -> QueryEntities:
    """
    Rank entities mentioned in recent messages.

    Each mention scores ``1 - index * recency_decay_factor`` (index 0 is the
    newest message) and active characters get a flat boost. Entities found
    in more than half of the scanned messages are too common to help and
    are dropped.

    Args:
        messages: Recent messages, newest first
        active_characters: Characters in the scene
        entity_window_size: Number of messages to scan
        recency_decay_factor: Weight lost per message of age
        top_entities_count: Number of entities to keep

    Returns:
        Top entities with their weights
    """
    if not messages:
        return QueryEntities()

    scanned = list(messages[:entity_window_size])
    weights: Dict[str, float] = {}
    message_counts: Dict[str, int] = {}

    for index, text in enumerate(scanned):
        recency_weight = 1 - index * recency_decay_factor
        entities = extract_entities(text)
        for entity in set(entities):
            message_counts[entity] = message_counts.get(entity, 0) + 1
        for entity in entities:
            weights[entity] = weights.get(entity, 0.0) + recency_weight

    for name in active_characters:
        if name and len(name) >= 2:
            weights[name] = weights.get(name, 0.0) + CHARACTER_BOOST

    threshold = len(scanned) * 0.5
    for entity, count in message_counts.items():
        if count > threshold:
            weights.pop(entity, None)

    ranked = sorted(weights.items(), key=lambda item: -item[1])[:top_entities_count]
    return QueryEntities(entities=[entity for entity, _ in ranked], weights=dict(ranked))


def build_embedding_query(
    messages: Sequence[str],
    entities: QueryEntities,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    embedding_window_size: int = DEFAULT_EMBEDDING_WINDOW_SIZE,
) -> str:
    """
    Recency-weighted text to embed for the current scene.

    The newest message counts twice, the one before it one and a half
    times, then up to three older messages once each; the top entities are
    appended as anchors. The result is cut to ``chunk_size`` characters.
    """
    if not messages:
        return ""

    recent = list(messages[:embedding_window_size])
    weighted: List[str] = []
    if recent and recent[0]:
        weighted.extend([recent[0], recent[0]])
    if len(recent) > 1 and recent[1]:
        weighted.extend([recent[1], recent[1][: len(recent[1]) // 2]])
    weighted.extend(text for text in recent[2:5] if text)

    weighted_text = " ".join(part for part in weighted if part)
    anchors = " ".join(entities.entities[:5])
    return f"{weighted_text} {anchors}"[:chunk_size]


def build_bm25_tokens(
    user_message: str,
    entities: QueryEntities,
    entity_boost_weight: float = DEFAULT_ENTITY_BOOST_WEIGHT,
) -> List[str]:
    """
    Keyword query tokens: the user's message plus boosted entity terms.

    Each entity's tokens are repeated ``ceil(weight * entity_boost_weight)``
    times so BM25 counts them that many times.
    """
    tokens = tokenize(user_message or "")
    for entity in entities.entities:
        repeats = math.ceil(entities.weights.get(entity, 1.0) * entity_boost_weight)
        entity_tokens = tokenize(entity)
        for _ in range(repeats):
            tokens.extend(entity_tokens)
    return tokens
