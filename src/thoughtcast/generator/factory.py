"""Builds the configured content source from settings."""

from __future__ import annotations

import logging

from thoughtcast.config.settings import Settings
from thoughtcast.generator.base import ContentSource

logger = logging.getLogger(__name__)


def create_content_source(settings: Settings) -> ContentSource:
    """Instantiate the provider named by ``settings.generator.provider``."""
    config = settings.generator
    logger.info("Using %s content source (model=%s)", config.provider, config.model)

    if config.provider == "openai":
        from thoughtcast.generator.openai import OpenAIContentSource
        return OpenAIContentSource(
            api_key=settings.openai_api_key.get_secret_value(),
            model=config.model,
            base_url=config.base_url,
        )
    if config.provider == "anthropic":
        from thoughtcast.generator.anthropic import AnthropicContentSource
        return AnthropicContentSource(
            api_key=settings.anthropic_api_key.get_secret_value(),
            model=config.model,
        )
    if config.provider == "scripted":
        from thoughtcast.generator.scripted import ScriptedContentSource
        return ScriptedContentSource()

    from thoughtcast.generator.llm7 import Llm7ContentSource
    return Llm7ContentSource(
        api_url=config.api_url,
        model=config.model,
        api_key=settings.llm7_api_key.get_secret_value(),
        timeout=config.timeout,
    )
