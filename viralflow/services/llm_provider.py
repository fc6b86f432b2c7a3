"""
LLM Provider interface for content generation and trend research.

The pipeline only needs "system + prompt in, text out"; parsing the JSON
answer happens in content_generation. Swap the provider with
`set_llm_provider` (tests, other vendors).
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Literal

from openai import AsyncOpenAI, OpenAIError

from viralflow.errors import LLMError
from viralflow.settings import get_settings

logger = logging.getLogger(__name__)

Purpose = Literal["content", "research"]


class LLMProvider(ABC):
    """Abstract LLM provider. Implement `complete` to plug in a real model."""

    @abstractmethod
    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int = 1024,
        purpose: Purpose = "content",
    ) -> str:
        ...

    async def aclose(self) -> None:
        """Release network resources; the provider is not used afterwards."""
        return None


class OpenAICompatibleProvider(LLMProvider):
    """Chat completions against any OpenAI-compatible endpoint (OpenRouter by default)."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        content_model: str | None = None,
        research_model: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        settings = get_settings()
        self.models: dict[str, str] = {
            "content": content_model or settings.llm_content_model,
            "research": research_model or settings.llm_research_model,
        }
        self._client = client or AsyncOpenAI(
            api_key=api_key or settings.llm_api_key,
            base_url=base_url or settings.llm_base_url,
        )

    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int = 1024,
        purpose: Purpose = "content",
    ) -> str:
        model = self.models[purpose]
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise LLMError(f"LLM call failed (model={model}): {exc}") from exc

        text = (response.choices[0].message.content or "").strip()
        logger.info(f"[llm] {purpose} completion from {model}: {len(text)} chars")
        return text

    async def aclose(self) -> None:
        # The client's connection pool belongs to the event loop that opened it
        await self._client.close()


class StubLLMProvider(LLMProvider):
    """Deterministic stub that returns plausible placeholder JSON."""

    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        max_tokens: int = 1024,
        purpose: Purpose = "content",
    ) -> str:
        if purpose == "research":
            return json.dumps({"topics": []})

        first_line = next((line.strip() for line in prompt.splitlines() if line.strip()), "your niche")
        return json.dumps({
            "content": f"What nobody tells you about {first_line.lower()}?\n\nShare your take in the comments.",
            "hashtags": ["viral", "trending", "growth"],
            "predicted_viral_score": 50,
            "reasoning": "stub generation, replace with real LLM",
        })


_provider: LLMProvider | None = None


def build_llm_provider() -> LLMProvider:
    """A new provider from settings; falls back to the stub when no API key is set.

    Short-lived event loops (one `asyncio.run` per Celery task) build their
    own provider and `aclose()` it before the loop ends.
    """
    if get_settings().llm_api_key:
        return OpenAICompatibleProvider()
    logger.warning("[llm] No LLM API key configured, using StubLLMProvider")
    return StubLLMProvider()


def get_llm_provider() -> LLMProvider:
    """Process-wide provider, or the one installed with `set_llm_provider`."""
    global _provider
    if _provider is None:
        _provider = build_llm_provider()
    return _provider


def set_llm_provider(provider: LLMProvider | None) -> None:
    global _provider
    _provider = provider
