"""Prompts for LLM-assisted memory selection."""

RETRIEVAL_SYSTEM_PROMPT = """You are a narrative memory curator for interactive fiction. Your role is to select the most relevant memories a character would recall based on the current scene.

Consider what information the character would naturally remember given the conversation topics, relationships involved, and emotional context. Respond with valid JSON only, no markdown formatting or additional text."""


SMART_RETRIEVAL_PROMPT = """<scene>
{scene}
</scene>

<memories>
{memories}
</memories>

<task>
Select up to {limit} memories that {character} would most naturally recall for this scene.

<selection_criteria>
- High importance (★★★★★) events take priority over low importance ones
- Direct relevance to current conversation topics or characters mentioned
- Relationship history with characters present in the scene
- Emotional continuity (past feelings toward people/places being discussed)
- Secrets or private knowledge relevant to the situation
- Recent events that provide immediate context
</selection_criteria>

<output_format>
{{"selected": [1, 4, 7], "reasoning": "Brief explanation"}}
</output_format>

<example>
Scene mentions: Elena asking about the old castle
Available: 1. [★★] Visited market yesterday, 2. [★★★★] Discovered hidden passage in castle, 3. [★] Ate breakfast
Output: {{"selected": [2], "reasoning": "The hidden passage discovery is directly relevant to discussing the castle"}}
</example>

Return only the JSON object with selected memory numbers (1-indexed) and reasoning.
</task>"""


def build_smart_retrieval_prompt(scene: str, numbered_list: str, character: str, limit: int) -> str:
    return SMART_RETRIEVAL_PROMPT.format(
        scene=scene, memories=numbered_list, character=character, limit=limit
    )
