"""OpenAI (and OpenAI-compatible DeepSeek) streaming client wrapper."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any

from openai import AsyncOpenAI

from agents.errors import ConfigurationError
from config.settings import Settings
from llm.base import BaseLLMClient, StreamCompleted, StreamEvent, TextDelta, ToolCallAccumulator

LOGGER = logging.getLogger(__name__)

DEEPSEEK_ENDPOINT = "https://api.deepseek.com"


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion streaming API."""

    def __init__(self, settings: Settings, *, client: AsyncOpenAI | None = None) -> None:
        if client is None:
            if not settings.llm_api_key:
                raise ConfigurationError("LLM API key must be configured for OpenAI client.")
            base_url = settings.llm_endpoint
            if settings.llm_provider == "deepseek" and not base_url:
                base_url = DEEPSEEK_ENDPOINT
            client = AsyncOpenAI(api_key=settings.llm_api_key, base_url=base_url or None)

        self._client = client
        self._model = settings.llm_model

    async def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[StreamEvent]:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "stream": True,
        }
        if tools:
            request["tools"] = list(tools)

        stream = await self._client.chat.completions.create(**request)

        accumulator = ToolCallAccumulator()
        finish_reason: str | None = None
        # Closing the stream releases the HTTP response when the turn is cancelled.
        async with stream:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield TextDelta(delta.content)
                    for fragment in delta.tool_calls or []:
                        function = fragment.function
                        accumulator.add(
                            fragment.index,
                            call_id=fragment.id,
                            name=function.name if function else None,
                            arguments=function.arguments if function else None,
                        )
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

        for request_event in accumulator.drain():
            yield request_event
        yield StreamCompleted(finish_reason)

    async def aclose(self) -> None:
        await self._client.close()
