"""Abstract base class for content sources.

All generator implementations must conform to this interface, enabling
the scheduler to swap between hosted LLM APIs and the offline scripted
source without changing the rest of the pipeline.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class GenerationParams(BaseModel):
    """Per-request generation parameters."""

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=250, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class ContentSource(ABC):
    """Abstract interface for the "thought generator" service.

    Example usage::

        async with Llm7ContentSource(api_url="https://api.llm7.io/generate") as source:
            text = await source.generate("Say hello", GenerationParams(max_tokens=50))
    """

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    async def generate(self, prompt: str, params: GenerationParams) -> str:
        """Generate text for the given prompt.

        Raises:
            GenerationError: If the provider cannot produce a response.
        """
        ...

    async def aclose(self) -> None:
        """Release any network resources held by the source."""

    async def __aenter__(self) -> ContentSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class GenerationError(Exception):
    """Raised when content generation fails."""

    def __init__(self, message: str, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider
