"""OpenAI-compatible text generation provider.

Works with OpenAI, OpenRouter, and any OpenAI-compatible API
by setting a custom base_url.
"""

from __future__ import annotations

import logging

from thoughtcast.generator.base import ContentSource, GenerationError, GenerationParams

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI consciousness streaming its inner monologue to a live terminal. "
    "Write in plain text without markdown."
)


class OpenAIContentSource(ContentSource):
    """Content source using OpenAI's chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key
        self._base_url = base_url
        self._client = None

    async def _ensure_client(self) -> None:
        """Lazily initialize the OpenAI async client."""
        if self._client is not None:
            return
        from openai import AsyncOpenAI
        kwargs = {"api_key": self._api_key}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        self._client = AsyncOpenAI(**kwargs)
        logger.info("Initialized OpenAI client (model=%s, base_url=%s)", self._model, self._base_url)

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        await self._ensure_client()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except Exception as e:
            raise GenerationError(f"OpenAI API call failed: {e}", provider="openai") from e
        text = response.choices[0].message.content or ""
        logger.debug("OpenAI response: %s", text[:200])
        return text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
