"""Client for self-hosted vLLM or TGI compatible inference endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any

import httpx

from agents.errors import BackendError, ConfigurationError
from config.settings import Settings
from llm.base import BaseLLMClient, StreamCompleted, StreamEvent, TextDelta, ToolCallAccumulator

LOGGER = logging.getLogger(__name__)


class VLLMClient(BaseLLMClient):
    """Streaming client for a self-hosted OpenAI-compatible inference server."""

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient | None = None) -> None:
        if not settings.llm_endpoint:
            raise ConfigurationError("Self-hosted LLM endpoint must be configured.")

        self._endpoint = settings.llm_endpoint
        self._model = settings.llm_model
        self._api_key = settings.llm_api_key
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(90, connect=10))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[StreamEvent]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "stream": True,
        }
        if tools:
            payload["tools"] = list(tools)

        accumulator = ToolCallAccumulator()
        finish_reason: str | None = None
        async with self._client.stream(
            "POST",
            f"{self._endpoint}/v1/chat/completions",
            json=payload,
            headers=self._headers(),
        ) as response:
            if response.status_code >= 400:
                body = await response.aread()
                raise BackendError(
                    f"LLM endpoint returned {response.status_code}: {body[:200].decode(errors='replace')}"
                )

            async for line in response.aiter_lines():
                data = _sse_data(line)
                if data is None:
                    continue
                if data == "[DONE]":
                    break

                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping undecodable stream chunk: %s", data[:200])
                    continue

                choices: list[dict] = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    yield TextDelta(content)
                for fragment in delta.get("tool_calls") or []:
                    function = fragment.get("function") or {}
                    accumulator.add(
                        int(fragment.get("index", 0)),
                        call_id=fragment.get("id"),
                        name=function.get("name"),
                        arguments=function.get("arguments"),
                    )
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        for request_event in accumulator.drain():
            yield request_event
        yield StreamCompleted(finish_reason)

    async def aclose(self) -> None:
        await self._client.aclose()


def _sse_data(line: str) -> str | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line.removeprefix("data:").strip()
