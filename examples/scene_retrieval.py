"""
Example: Retrieving scene memories with scene-recall

Demonstrates:
1. Building memories and a chat transcript
2. Narrator-mode retrieval (POV = characters present)
3. Group-chat retrieval (POV = responding character)
4. Optional Ollama embeddings for the vector bonus

Install:
    pip install scene-recall
    # Optional: a local Ollama server with nomic-embed-text for embeddings
"""

import asyncio
import logging
import os

from scene_recall import CharacterState, ChatTurn, Memory, RecallService, RecallSettings, Relationship

logging.basicConfig(level=logging.INFO)


def build_chat():
    turns = []
    lines = [
        ("Kira", False, "The caravan reaches the ruined fort at dusk."),
        ("Sam", True, "I search the gatehouse for supplies."),
        ("Kira", False, "Sam finds an old map hidden under a loose stone."),
        ("Sam", True, "I hand the map to Kira without telling Aldo."),
        ("Kira", False, "Aldo arrives later, soaked from the storm."),
        ("Sam", True, "Where does the map lead?"),
    ]
    # The first four messages have already been summarized out of the prompt
    for i, (name, is_user, content) in enumerate(lines):
        turns.append(ChatTurn(content=content, name=name, is_user=is_user, is_system=i < 4))
    return turns


def build_memories():
    return [
        Memory(
            id="fort",
            summary="The caravan reached the ruined fort at dusk",
            importance=2,
            message_ids=[0],
            characters_involved=["Kira", "Sam"],
            witnesses=["Kira", "Sam"],
        ),
        Memory(
            id="map",
            summary="Sam found an old map under a stone in the gatehouse",
            importance=4,
            message_ids=[2],
            witnesses=["Sam", "Kira"],
            event_type="discovery",
        ),
        Memory(
            id="secret",
            summary="Sam gave Kira the map and kept it from Aldo",
            importance=5,
            message_ids=[3],
            characters_involved=["Sam", "Kira", "Aldo"],
            witnesses=["Sam", "Kira"],
            is_secret=True,
        ),
    ]


async def example_narrator_mode():
    """Example: One-on-one chat, POV is whoever is in the scene."""
    print("\n=== Narrator Mode ===")

    service = RecallService.from_settings(RecallSettings(smart_retrieval_enabled=False))
    try:
        result = await service.retrieve(
            build_chat(),
            build_memories(),
            character_name="Kira",
            user_name="Sam",
            character_states={"Kira": CharacterState(name="Kira", current_emotion="curious")},
            relationships=[Relationship(character_a="Kira", character_b="Sam", trust_level=8)],
        )
        print(result.context)
        print(f"\nSelected: {[m.id for m in result.memories]}")
    finally:
        service.close()


async def example_group_chat():
    """Example: Group chat, only Aldo's knowledge counts."""
    print("\n=== Group Chat (Aldo responding) ===")

    service = RecallService.from_settings(RecallSettings(smart_retrieval_enabled=False))
    try:
        result = await service.retrieve(
            build_chat(),
            build_memories(),
            character_name="Aldo",
            user_name="Sam",
            is_group_chat=True,
            group_members=["Kira"],
        )
        # Aldo witnessed nothing, so the POV fallback kicks in
        print(f"POV fallback used: {result.used_pov_fallback}")
        print(result.context)
    finally:
        service.close()


async def example_with_ollama():
    """Example: Scene embeddings from a local Ollama server."""
    base_url = os.getenv("OLLAMA_URL")
    if not base_url:
        print("\nSet OLLAMA_URL (e.g. http://localhost:11434) to run the embedding example")
        return

    from scene_recall.embeddings import OllamaEmbedding

    print("\n=== With Ollama Embeddings ===")
    embedder = OllamaEmbedding(model="nomic-embed-text", base_url=base_url)
    service = RecallService.from_settings(embedder=embedder)
    try:
        result = await service.retrieve(build_chat(), build_memories(), "Kira", "Sam")
        print(result.context)
        print(service.get_metrics())
    finally:
        await service.aclose()


async def main():
    """Run all examples."""
    print("scene-recall Examples")
    print("=" * 60)

    await example_narrator_mode()
    await example_group_chat()
    await example_with_ollama()


if __name__ == "__main__":
    asyncio.run(main())
