"""
Memory re-ranker backed by a casual-llm provider.

Works with any provider casual-llm supports (OpenAI, Ollama, etc.); the
provider is created by the host and injected here.
"""

import logging

from casual_llm import LLMProvider, SystemMessage, UserMessage

from scene_recall.retrieval.prompts import RETRIEVAL_SYSTEM_PROMPT, build_smart_retrieval_prompt

logger = logging.getLogger(__name__)


class LLMReranker:
    """
    Re-ranker that asks an LLM provider to pick memories for the scene.

    Example:
        >>> reranker = LLMReranker(llm_provider=provider, model_name="qwen2.5:7b")
        >>> raw = await reranker.rerank(scene, numbered, "Kira", 8)
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        model_name: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ):
        """
        Initialize the re-ranker.

        Args:
            llm_provider: LLM provider instance (OpenAI, Ollama, etc.)
            model_name: Name of the model (for logging)
            temperature: Sampling temperature
            max_tokens: Completion token limit
        """
        self.llm_provider = llm_provider
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.llm_call_count = 0
        self.llm_success_count = 0
        self.llm_failure_count = 0

        logger.info(f"LLMReranker initialized: model={model_name}")

    async def rerank(
        self, scene_text: str, numbered_list: str, pov_label: str, target_count: int
    ) -> str:
        """
        Ask the LLM which memories the character would recall.

        Raises:
            Exception: If the provider call fails
        """
        messages = [
            SystemMessage(content=RETRIEVAL_SYSTEM_PROMPT),
            UserMessage(
                content=build_smart_retrieval_prompt(
                    scene_text, numbered_list, pov_label, target_count
                )
            ),
        ]

        self.llm_call_count += 1
        try:
            response = await self.llm_provider.chat(
                messages,
                response_format="json",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            self.llm_success_count += 1
        except Exception:
            self.llm_failure_count += 1
            raise

        return response.content or ""

    def get_metrics(self) -> dict:
        """
        Get metrics about re-ranker LLM usage.

        Returns:
            Dictionary with call counts and success rate
        """
        metrics = {
            "reranker_llm_call_count": self.llm_call_count,
            "reranker_llm_success_count": self.llm_success_count,
            "reranker_llm_failure_count": self.llm_failure_count,
        }

        if self.llm_call_count > 0:
            success_rate = (self.llm_success_count / self.llm_call_count) * 100
            metrics["reranker_llm_success_rate_percent"] = round(success_rate, 2)

        return metrics
