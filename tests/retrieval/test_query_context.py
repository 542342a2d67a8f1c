"""Tests for entity extraction and query building."""

import pytest

from scene_recall.retrieval.query_context import (
    QueryEntities,
    build_bm25_tokens,
    build_embedding_query,
    extract_entities,
    extract_query_context,
    parse_recent_messages,
)
from scene_recall.scoring.vector_math import tokenize


def test_extract_capitalized_names():
    assert extract_entities("Then Mira left for Riverton") == ["Mira", "Riverton"]


def test_sentence_starters_are_ignored():
    assert extract_entities("The tavern was quiet. When it rained, we left.") == []


def test_quoted_phrases():
    entities = extract_entities('She whispered "silver key" twice')
    assert "silver key" in entities


def test_cyrillic_names():
    entities = extract_entities("После дождя мы встретили Анну в Москве")

    assert "Анну" in entities
    assert "Москве" in entities
    assert "После" not in entities


def test_parse_recent_messages_newest_first():
    text = "first\n\nsecond\nthird\n"
    assert parse_recent_messages(text, count=2) == ["third", "second"]
    assert parse_recent_messages("", count=2) == []


def test_extract_query_context_ranks_by_recency_and_boost():
    messages = [
        "Kira met Aldo at the Silver Gate",
        "The rain fell on Riverton",
        "nothing here",
        "more nothing",
    ]

    result = extract_query_context(messages, active_characters=["Kira"])

    assert result.entities[0] == "Kira"
    assert result.weights["Kira"] == pytest.approx(4.0)
    assert result.weights["Riverton"] == pytest.approx(0.91)
    assert len(result.entities) == 5


def test_extract_query_context_drops_ubiquitous_entities():
    """An entity mentioned in most messages carries no signal."""
    messages = ["Aldo waves", "Aldo smiles", "Aldo sits near Mira"]

    result = extract_query_context(messages)

    assert "Aldo" not in result.entities
    assert "Mira" in result.entities


def test_extract_query_context_empty():
    assert extract_query_context([]).entities == []


def test_build_embedding_query_weights_recent_messages():
    messages = ["abcd", "wxyz", "c3", "c4", "c5", "c6"]
    entities = QueryEntities(entities=["Kira"], weights={"Kira": 1.0})

    query = build_embedding_query(messages, entities)

    assert query == "abcd abcd wxyz wx c3 c4 c5 Kira"


def test_build_embedding_query_respects_chunk_size():
    query = build_embedding_query(["a" * 50], QueryEntities(), chunk_size=10)
    assert len(query) == 10


def test_build_bm25_tokens_boosts_entities():
    entities = QueryEntities(entities=["Kira"], weights={"Kira": 1.0})

    tokens = build_bm25_tokens("dragons attack", entities, entity_boost_weight=2.0)

    base = tokenize("dragons attack")
    assert tokens[: len(base)] == base
    assert tokens[len(base):] == tokenize("Kira") * 2


def test_build_bm25_tokens_without_entities():
    assert build_bm25_tokens("", QueryEntities()) == []
