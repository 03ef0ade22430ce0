# =============================================================================
# Generation Backends — Chat Completions, One-Shot and Streamed
# =============================================================================
#
#   LLMProvider (Protocol)             complete() → LLMResponse
#   │                                  stream()   → async iterator of deltas
#   ├── OpenAICompatibleProvider       Ollama /v1 by default; any server that
#   │                                  speaks the OpenAI chat API
#   └── AnthropicProvider              Claude via the Anthropic SDK
#
#   get_llm_provider()                 process-wide instance for
#                                      settings.llm_provider
#
# The system prompt is always passed separately from the conversation.
# OpenAI-style servers receive it as a leading "system" message, Anthropic
# as the top-level `system=` argument.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from veritas.config import settings

logger = logging.getLogger(__name__)

Messages = list[dict[str, str]]


@dataclass
class LLMResponse:
    """One finished completion, whichever backend produced it."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Answer the conversation in one response.

        `messages` holds only "user" and "assistant" turns; instructions go
        in `system`. Unset sampling arguments fall back to the configured
        llm_temperature / llm_max_tokens.
        """
        ...

    def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Like complete(), but yields text deltas as the model produces them."""
        ...


class _ConfiguredProvider:
    """Model name and sampling defaults shared by both backends."""

    def __init__(self, model: str | None) -> None:
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    def _sampling(self, temperature: float | None, max_tokens: int | None) -> dict:
        return {
            "model": self._model,
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._max_tokens,
        }


# ---------------------------------------------------------------------------
# OpenAI-compatible servers (Ollama, vLLM, hosted APIs)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_ConfiguredProvider):
    """
    Chat completions over the OpenAI wire format.

    Points at the same Ollama server as the embedder unless LLM_BASE_URL is
    set, e.g. to use a hosted model:
        LLM_BASE_URL=https://api.groq.com/openai/v1
        LLM_API_KEY=...
        LLM_MODEL=llama-3.1-8b-instant
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        super().__init__(model)
        base_url = base_url or settings.llm_base_url or settings.ollama_base_url
        # Ollama ignores the key but the SDK refuses an empty one
        self._client = AsyncOpenAI(
            api_key=api_key or settings.llm_api_key or settings.ollama_api_key,
            base_url=base_url,
        )
        logger.info("LLM: OpenAI-compatible model=%s at %s", self._model, base_url)

    @staticmethod
    def _with_system(messages: Messages, system: str | None) -> Messages:
        if not system:
            return list(messages)
        return [{"role": "system", "content": system}, *messages]

    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        response = await self._client.chat.completions.create(
            messages=self._with_system(messages, system),
            **self._sampling(temperature, max_tokens),
        )
        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        events = await self._client.chat.completions.create(
            messages=self._with_system(messages, system),
            stream=True,
            **self._sampling(temperature, max_tokens),
        )
        async for event in events:
            # Usage-only and keep-alive events carry no choices
            if event.choices and event.choices[0].delta.content:
                yield event.choices[0].delta.content


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider(_ConfiguredProvider):
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        api_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not api_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )
        super().__init__(model)
        self._client = AsyncAnthropic(api_key=api_key)
        logger.info("LLM: Anthropic model=%s", self._model)

    def _request(
        self,
        messages: Messages,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        request = {"messages": messages, **self._sampling(temperature, max_tokens)}
        if system:
            request["system"] = system
        return request

    async def complete(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        response = await self._client.messages.create(
            **self._request(messages, system, temperature, max_tokens)
        )
        text = next((block.text for block in response.content if block.type == "text"), "")
        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def stream(
        self,
        messages: Messages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        async with self._client.messages.stream(
            **self._request(messages, system, temperature, max_tokens)
        ) as response:
            async for text in response.text_stream:
                yield text


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """Provider for settings.llm_provider ("openai_compatible" or "anthropic")."""
    global _provider
    if _provider is None:
        if settings.llm_provider == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = OpenAICompatibleProvider()
    return _provider
