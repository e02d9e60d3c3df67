"""Anthropic Claude text generation provider."""

from __future__ import annotations

import logging

from thoughtcast.generator.base import ContentSource, GenerationError, GenerationParams
from thoughtcast.generator.openai import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class AnthropicContentSource(ContentSource):
    """Content source using Anthropic's messages API."""

    def __init__(self, api_key: str, model: str = "claude-3-5-haiku-latest") -> None:
        super().__init__(model=model)
        self._api_key = api_key
        self._client = None

    async def _ensure_client(self) -> None:
        """Lazily initialize the Anthropic async client."""
        if self._client is not None:
            return
        import anthropic
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        logger.info("Initialized Anthropic client (model=%s)", self._model)

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        await self._ensure_client()
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=params.max_tokens,
                temperature=min(params.temperature, 1.0),
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise GenerationError(f"Anthropic API call failed: {e}", provider="anthropic") from e
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
