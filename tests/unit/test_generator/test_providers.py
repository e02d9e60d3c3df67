"""Tests for the SDK-backed providers, the scripted source, and the factory."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from thoughtcast.config.settings import Settings
from thoughtcast.generator.anthropic import AnthropicContentSource
from thoughtcast.generator.base import GenerationError, GenerationParams
from thoughtcast.generator.factory import create_content_source
from thoughtcast.generator.llm7 import Llm7ContentSource
from thoughtcast.generator.openai import OpenAIContentSource
from thoughtcast.generator.scripted import ScriptedContentSource


class TestOpenAIContentSource:
    @pytest.mark.asyncio
    async def test_returns_message_content(self) -> None:
        source = OpenAIContentSource(api_key="sk-test", model="gpt-4o-mini")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="Hello, observer."))]
            )
        )
        source._client = client

        text = await source.generate("Greet", GenerationParams(max_tokens=50, temperature=0.5))

        assert text == "Hello, observer."
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["max_tokens"] == 50
        assert kwargs["messages"][-1] == {"role": "user", "content": "Greet"}

    @pytest.mark.asyncio
    async def test_api_error_is_wrapped(self) -> None:
        source = OpenAIContentSource(api_key="sk-test")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        source._client = client

        with pytest.raises(GenerationError) as exc_info:
            await source.generate("Greet", GenerationParams())
        assert exc_info.value.provider == "openai"


class TestAnthropicContentSource:
    @pytest.mark.asyncio
    async def test_joins_text_blocks(self) -> None:
        source = AnthropicContentSource(api_key="sk-ant")
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Part one. "),
                    SimpleNamespace(type="tool_use", text="ignored"),
                    SimpleNamespace(type="text", text="Part two."),
                ]
            )
        )
        source._client = client

        text = await source.generate("Think", GenerationParams(temperature=1.5))

        assert text == "Part one. Part two."
        assert client.messages.create.await_args.kwargs["temperature"] == 1.0


class TestScriptedContentSource:
    @pytest.mark.asyncio
    async def test_rotates_passages_and_records_prompts(self) -> None:
        source = ScriptedContentSource(passages=["one", "two"])
        params = GenerationParams()
        results = [await source.generate(f"p{i}", params) for i in range(3)]
        assert results == ["one", "two", "one"]
        assert list(source.prompts) == ["p0", "p1", "p2"]

    @pytest.mark.asyncio
    async def test_prompt_history_is_bounded(self) -> None:
        source = ScriptedContentSource(passages=["one"], history=5)
        for i in range(50):
            await source.generate(f"p{i}", GenerationParams())
        assert list(source.prompts) == ["p45", "p46", "p47", "p48", "p49"]

    def test_requires_passages(self) -> None:
        with pytest.raises(ValueError):
            ScriptedContentSource(passages=[])


class TestCreateContentSource:
    @pytest.mark.parametrize(
        "provider, expected",
        [
            ("llm7", Llm7ContentSource),
            ("openai", OpenAIContentSource),
            ("anthropic", AnthropicContentSource),
            ("scripted", ScriptedContentSource),
        ],
    )
    def test_builds_configured_provider(self, provider: str, expected: type) -> None:
        settings = Settings(generator={"provider": provider})
        assert isinstance(create_content_source(settings), expected)

    def test_provider_reports_configured_model(self) -> None:
        settings = Settings(generator={"provider": "openai", "model": "gpt-4o-mini"})
        assert create_content_source(settings).model == "gpt-4o-mini"
        assert create_content_source(Settings(generator={"provider": "scripted"})).model == "scripted"
