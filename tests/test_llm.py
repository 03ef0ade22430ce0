# =============================================================================
# Unit Tests — LLM Providers
# =============================================================================
#
# SDK clients are replaced with mocks after construction; no network calls.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from veritas.services.llm import AnthropicProvider, OpenAICompatibleProvider


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


async def _collect(agen) -> list[str]:
    return [item async for item in agen]


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def _openai_provider() -> OpenAICompatibleProvider:
    provider = OpenAICompatibleProvider(
        api_key="test", model="llama3.1", base_url="http://localhost:11434/v1",
    )
    provider._client = MagicMock()
    return provider


class TestOpenAICompatibleProvider:

    def test_system_prompt_is_first_message(self):
        provider = _openai_provider()
        messages = provider._with_system([{"role": "user", "content": "hi"}], "Be brief.")
        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ]

    def test_complete(self):
        provider = _openai_provider()
        provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Thirty days."))],
            model="llama3.1",
            usage=SimpleNamespace(prompt_tokens=50, completion_tokens=3),
        ))

        response = _run(provider.complete([{"role": "user", "content": "Notice?"}], system="ctx"))

        assert response.content == "Thirty days."
        assert (response.input_tokens, response.output_tokens) == (50, 3)
        sent = provider._client.chat.completions.create.call_args.kwargs["messages"]
        assert sent[0] == {"role": "system", "content": "ctx"}

    def test_stream_skips_empty_deltas(self):
        async def _events():
            for content in ["Thirty", None, " days."]:
                yield _chunk(content)
            yield SimpleNamespace(choices=[])

        provider = _openai_provider()
        provider._client.chat.completions.create = AsyncMock(return_value=_events())

        deltas = _run(_collect(provider.stream([{"role": "user", "content": "Notice?"}])))

        assert deltas == ["Thirty", " days."]
        assert provider._client.chat.completions.create.call_args.kwargs["stream"] is True


class TestAnthropicProvider:

    def test_requires_api_key(self):
        with patch("veritas.services.llm.settings") as mock_settings:
            mock_settings.llm_api_key = None
            mock_settings.anthropic_api_key = None
            with pytest.raises(ValueError, match="No Anthropic API key"):
                AnthropicProvider()

    def test_system_prompt_is_top_level_kwarg(self):
        provider = AnthropicProvider(api_key="sk-test", model="claude-test")
        kwargs = provider._request([{"role": "user", "content": "hi"}], "ctx", None, None)
        assert kwargs["system"] == "ctx"
        assert all(m["role"] != "system" for m in kwargs["messages"])
