"""
LLM-assisted memory selection with deterministic fallback.

The re-ranker sees a numbered list of candidates and answers with the
numbers it wants. Anything short of a usable answer yields a
SmartRejection so the caller can fall back to plain score order.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field, ValidationError
from typing_extensions import runtime_checkable

from scene_recall.models import Memory
from scene_recall.retrieval.prompts import RETRIEVAL_SYSTEM_PROMPT, build_smart_retrieval_prompt

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@runtime_checkable
class MemoryReranker(Protocol):
    """Picks the memories a character would recall, given the scene."""

    async def rerank(
        self, scene_text: str, numbered_list: str, pov_label: str, target_count: int
    ) -> str:
        """
        Args:
            scene_text: Recent chat context
            numbered_list: One candidate per line, numbered from 1
            pov_label: Name of the character doing the remembering
            target_count: Maximum number of memories to pick

        Returns:
            Raw model output, expected to be JSON like
            {"selected": [1, 4], "reasoning": "..."}
        """
        ...


class RetrievalResponse(BaseModel):
    selected: List[int] = Field(default_factory=list)
    reasoning: Optional[str] = None


@dataclass
class SmartSelection:
    memories: List[Memory]
    reasoning: Optional[str] = None


@dataclass
class SmartRejection:
    reason: str
    detail: str = ""


SmartResult = Union[SmartSelection, SmartRejection]


class OpenAIReranker:
    """
    Re-ranker backed by an OpenAI-compatible chat completions API.

    Example:
        >>> reranker = OpenAIReranker(model="gpt-4o-mini")
        >>> raw = await reranker.rerank(scene, numbered, "Kira", 8)
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 500,
        timeout: float = 60.0,
    ):
        """
        Initialize the re-ranker.

        Args:
            model: Chat model name
            api_key: API key (None = use OPENAI_API_KEY env var)
            base_url: Custom endpoint for OpenAI-compatible servers
            temperature: Sampling temperature
            max_tokens: Completion token limit
            timeout: Request timeout in seconds
        """
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "openai is required for OpenAIReranker. "
                "Install with: pip install scene-recall[rerank-openai]"
            ) from e

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url,
            timeout=timeout,
        )
        logger.info(f"OpenAIReranker initialized: model={model}")

    async def rerank(
        self, scene_text: str, numbered_list: str, pov_label: str, target_count: int
    ) -> str:
        prompt = build_smart_retrieval_prompt(scene_text, numbered_list, pov_label, target_count)
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": RETRIEVAL_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


def format_numbered_list(memories: Sequence[Memory]) -> str:
    """
    One line per memory: number, event type, importance stars, secret flag, summary.

    Example:
        >>> print(format_numbered_list([memory]))
        1. [revelation] [★★★★] [Secret] Kira is the heir
    """
    lines = []
    for i, memory in enumerate(memories):
        stars = "★" * memory.importance
        secret = "[Secret] " if memory.is_secret else ""
        lines.append(f"{i + 1}. [{memory.event_type or 'event'}] [{stars}] {secret}{memory.summary}")
    return "\n".join(lines)


def parse_rerank_response(raw: str) -> RetrievalResponse:
    """
    Parse re-ranker output, tolerating a markdown code fence.

    Raises:
        ValueError: If the text is not a JSON object of the expected shape
    """
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Response is not a JSON object")
    try:
        return RetrievalResponse.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Response has the wrong shape: {e}") from e


def resolve_selection(candidates: Sequence[Memory], selected: Sequence[int]) -> List[Memory]:
    """
    Map 1-indexed picks back to candidates, in candidate order.

    Out-of-range numbers are dropped, and so are duplicates.
    """
    indices = sorted({i - 1 for i in selected if 1 <= i <= len(candidates)})
    return [candidates[i] for i in indices]


async def select_smart(
    candidates: Sequence[Memory],
    reranker: MemoryReranker,
    scene_text: str,
    pov_label: str,
    target_count: int,
) -> SmartResult:
    """
    Ask the re-ranker to choose among candidates.

    Args:
        candidates: Stage-one memories, best first
        reranker: LLM collaborator
        scene_text: Recent chat context
        pov_label: Character doing the remembering
        target_count: How many memories the final budget roughly holds

    Returns:
        SmartSelection with the chosen memories (best first), or
        SmartRejection explaining why the answer was unusable
    """
    if not candidates:
        return SmartSelection(memories=[])
    if len(candidates) <= target_count:
        return SmartSelection(memories=list(candidates))

    logger.debug(
        f"Smart retrieval: analyzing {len(candidates)} memories to select {target_count}"
    )

    try:
        raw = await reranker.rerank(
            scene_text, format_numbered_list(candidates), pov_label, target_count
        )
    except Exception as e:
        logger.warning(f"Smart retrieval re-ranker failed: {e}")
        return SmartRejection(reason="reranker_error", detail=str(e))

    try:
        response = parse_rerank_response(raw)
    except ValueError as e:
        logger.info(f"Smart retrieval: unparseable response, falling back: {e}")
        return SmartRejection(reason="parse_error", detail=str(e))

    if not response.selected:
        return SmartRejection(reason="empty_selection")

    chosen = resolve_selection(candidates, response.selected)
    if not chosen:
        return SmartRejection(
            reason="invalid_indices", detail=f"selected={response.selected}"
        )

    logger.info(
        f"Smart retrieval: selected {len(chosen)} memories. "
        f"Reasoning: {response.reasoning or 'none provided'}"
    )
    return SmartSelection(memories=chosen, reasoning=response.reasoning)
