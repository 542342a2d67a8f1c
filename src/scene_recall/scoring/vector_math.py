"""
Pure scoring math: vector similarity, forgetfulness decay and BM25.

Everything here is free of I/O and side effects so the same functions run
in-process and inside the scoring worker.
"""

import math
import re
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import snowballstemmer
from rank_bm25 import BM25Okapi

from scene_recall.config import ScoringParameters
from scene_recall.models import Memory
from scene_recall.scoring.models import ScoreBreakdown, ScoredMemory

BM25_K1 = 1.2
BM25_B = 0.75

_WORD_RE = re.compile(r"\w+")
_CYRILLIC_RE = re.compile("[\u0400-\u04FF]")
_LATIN_RE = re.compile("[a-zA-Z\u00C0-\u024F]")

_russian_stemmer = snowballstemmer.stemmer("russian")
_english_stemmer = snowballstemmer.stemmer("english")

STOP_WORDS = frozenset(
    """
    the and is a an in to of for with on at from by as it this that are was were
    be been being have has had do does did will would could should may might must
    shall can or but not no yes so if then than when what which who whom whose
    where why how all each every both few more most other some such only own same
    just also now here there about into through during before after above below up
    down out off over under again further once he she they we you i me him her
    them us my your his its our their
    и в во не что он на я с со как а то все она так его но да ты к у же вы за бы
    по только ее мне было вот от меня еще нет о из ему теперь когда даже ну вдруг
    ли если уже или ни быть был него до вас нибудь опять уж вам ведь там потом себя
    ничего ей может они тут где есть надо ней для мы тебя их чем была сам чтоб без
    будто чего раз тоже себе под будет ж тогда кто этот того потому этого какой
    совсем ним здесь этом один почти мой тем чтобы нее сейчас были куда зачем всех
    никогда можно при наконец два об другой хоть после над больше тот через эти нас
    про всего них какая много разве три эту моя впрочем хорошо свою этой перед
    иногда лучше чуть том нельзя такой им более всегда конечно всю между
    """.split()
)

QueryTokens = Union[str, Sequence[str], None]


def stem_word(word: str) -> str:
    """Stem by script: Cyrillic -> Russian, Latin -> English, anything else unchanged."""
    if _CYRILLIC_RE.search(word):
        return _russian_stemmer.stemWord(word)
    if _LATIN_RE.search(word):
        return _english_stemmer.stemWord(word)
    return word


def tokenize(text: Optional[str]) -> List[str]:
    """
    Split text into stemmed keyword tokens.

    Words of two characters or fewer and stop words are dropped before
    stemming.

    Example:
        >>> tokenize("The dragon was sleeping in the cave")
        ['dragon', 'sleep', 'cave']
    """
    if not text:
        return []
    words = _WORD_RE.findall(text.lower())
    return [stem_word(word) for word in words if len(word) > 2 and word not in STOP_WORDS]


def cosine_similarity(
    vec_a: Optional[Sequence[float]], vec_b: Optional[Sequence[float]]
) -> float:
    """
    Cosine similarity of two vectors in [-1, 1].

    Returns 0.0 when either vector is missing or empty, when the lengths
    differ, or when either magnitude is zero.
    """
    if vec_a is None or vec_b is None:
        return 0.0
    if len(vec_a) == 0 or len(vec_a) != len(vec_b):
        return 0.0

    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0.0 or not math.isfinite(magnitude):
        return 0.0

    similarity = float(np.dot(a, b) / magnitude)
    return max(-1.0, min(1.0, similarity))


def decayed_importance(importance: int, distance: float, base_lambda: float) -> float:
    decay = base_lambda / (importance * importance)
    return importance * math.exp(-decay * distance)


def forgetfulness_score(
    importance: int, distance: float, base_lambda: float, importance_5_floor: float
) -> float:
    """
    Exponential decay of relevance with message distance.

    ``lambda = base_lambda / importance**2`` so important memories fade
    slower; importance-5 memories never score below the floor.
    """
    score = decayed_importance(importance, distance, base_lambda)
    if importance == 5:
        score = max(score, importance_5_floor)
    return score


class KeywordIndex(BM25Okapi):
    """
    BM25 over a batch of memory summaries.

    Uses the non-negative IDF variant ``log((N - df + 0.5) / (df + 0.5) + 1)``
    so terms present in most (or all) of a small batch still count.
    """

    def __init__(self, corpus: List[List[str]]):
        super().__init__(corpus, k1=BM25_K1, b=BM25_B)

    def _calc_idf(self, nd):
        self.idf = {
            word: math.log((self.corpus_size - freq + 0.5) / (freq + 0.5) + 1)
            for word, freq in nd.items()
        }

    def get_scores(self, query):
        if self.avgdl == 0:
            return np.zeros(self.corpus_size)
        return super().get_scores(query)


def keyword_scores(query_tokens: List[str], documents: List[List[str]]) -> List[float]:
    """BM25 score of every document against the query (0.0 for everything when either is empty)."""
    if not query_tokens or not documents:
        return [0.0] * len(documents)
    index = KeywordIndex(documents)
    return [float(score) for score in index.get_scores(query_tokens)]


def memory_distance(memory: Memory, chat_length: int) -> int:
    """Messages elapsed since the memory's latest source message."""
    return max(0, chat_length - memory.last_message_id)


def calculate_score(
    memory: Memory,
    context_embedding: Optional[Sequence[float]],
    chat_length: int,
    params: ScoringParameters,
    bm25_score: float = 0.0,
) -> ScoreBreakdown:
    """Score one memory and return every component of the total."""
    distance = memory_distance(memory, chat_length)
    importance = memory.importance

    base = decayed_importance(importance, distance, params.base_lambda)
    base_after_floor = forgetfulness_score(
        importance, distance, params.base_lambda, params.importance_5_floor
    )

    vector_similarity = 0.0
    vector_bonus = 0.0
    if context_embedding is not None and memory.embedding:
        vector_similarity = cosine_similarity(context_embedding, memory.embedding)
        threshold = params.vector_similarity_threshold
        if vector_similarity > threshold:
            normalized = (vector_similarity - threshold) / (1 - threshold)
            vector_bonus = normalized * params.vector_similarity_weight

    bm25_bonus = bm25_score * params.keyword_match_weight

    return ScoreBreakdown(
        total=base_after_floor + vector_bonus + bm25_bonus,
        base=base,
        base_after_floor=base_after_floor,
        recency_penalty=base_after_floor - base,
        vector_bonus=vector_bonus,
        vector_similarity=vector_similarity,
        bm25_bonus=bm25_bonus,
        bm25_score=bm25_score,
        distance=distance,
        importance=importance,
    )


def resolve_query_tokens(query: QueryTokens) -> List[str]:
    if query is None:
        return []
    if isinstance(query, str):
        return tokenize(query)
    return list(query)


def rank_order(scored: Iterable[ScoredMemory]) -> List[ScoredMemory]:
    """Best first; ties go to higher importance, then the more recent memory."""
    return sorted(
        scored,
        key=lambda item: (
            -item.score,
            -item.memory.importance,
            -item.memory.effective_sequence,
        ),
    )


def score_memories(
    memories: Sequence[Memory],
    context_embedding: Optional[Sequence[float]],
    chat_length: int,
    params: ScoringParameters,
    query: QueryTokens = None,
) -> List[ScoredMemory]:
    """
    Score every memory and return them best first.

    Args:
        memories: Candidate memories
        context_embedding: Embedding of the current scene, or None
        chat_length: Number of messages in the chat
        params: Scoring constants
        query: Raw query text or pre-built BM25 tokens

    Returns:
        ScoredMemory entries in rank order
    """
    if not memories:
        return []

    tokens = resolve_query_tokens(query)
    if tokens:
        bm25 = keyword_scores(tokens, [tokenize(memory.summary) for memory in memories])
    else:
        bm25 = [0.0] * len(memories)

    scored = []
    for memory, keyword_score in zip(memories, bm25):
        breakdown = calculate_score(memory, context_embedding, chat_length, params, keyword_score)
        scored.append(ScoredMemory(memory=memory, score=breakdown.total, breakdown=breakdown))

    return rank_order(scored)
