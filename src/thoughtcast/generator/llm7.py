"""LLM7 text generation provider.

Posts the prompt to the LLM7 completion endpoint with httpx and returns
the ``generated_text`` field of the JSON response.
"""

from __future__ import annotations

import logging

import httpx

from thoughtcast.generator.base import ContentSource, GenerationError, GenerationParams

logger = logging.getLogger(__name__)


class Llm7ContentSource(ContentSource):
    """Content source backed by the LLM7 HTTP API."""

    def __init__(
        self,
        api_url: str = "https://api.llm7.io/generate",
        model: str = "llm7-default",
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(model=model)
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                timeout=self._timeout, headers=headers, transport=self._transport
            )
            logger.info("Initialized LLM7 client (model=%s, url=%s)", self._model, self._api_url)
        return self._client

    async def generate(self, prompt: str, params: GenerationParams) -> str:
        client = self._ensure_client()
        logger.info("Sending prompt to LLM7: %s...", prompt[:50])
        payload = {
            "prompt": prompt,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "model": self._model,
        }
        try:
            resp = await client.post(self._api_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "LLM7 returned status %d: %s", e.response.status_code, e.response.text[:200]
            )
            raise GenerationError(f"LLM7 API error: {e}", provider="llm7") from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationError(f"LLM7 request failed: {e}", provider="llm7") from e

        text = data.get("generated_text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise GenerationError("LLM7 response has no generated_text", provider="llm7")
        logger.info("Received AI content: %s...", text[:50])
        return text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
