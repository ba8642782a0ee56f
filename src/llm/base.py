"""Shared abstractions for streaming language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class StreamCompleted:
    finish_reason: str | None = None


StreamEvent = Union[TextDelta, ToolCallRequest, StreamCompleted]


@dataclass
class _PendingToolCall:
    call_id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Reassembles streamed tool-call fragments keyed by their stream index.

    Chat-completion streams deliver a tool call's id and name once and its JSON
    arguments in pieces; calls are released in index order when the stream ends.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PendingToolCall] = {}

    def add(
        self,
        index: int,
        *,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        pending = self._calls.setdefault(index, _PendingToolCall())
        if call_id:
            pending.call_id = call_id
        if name:
            pending.name += name
        if arguments:
            pending.arguments.append(arguments)

    def drain(self) -> list[ToolCallRequest]:
        requests = [
            ToolCallRequest(
                call_id=pending.call_id or f"call_{index}",
                name=pending.name,
                arguments="".join(pending.arguments) or "{}",
            )
            for index, pending in sorted(self._calls.items())
        ]
        self._calls.clear()
        return requests


class BaseLLMClient(ABC):
    """Abstract base class for streaming LLM providers."""

    @abstractmethod
    def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[StreamEvent]:
        """Stream text deltas and tool-call requests for a chat conversation."""

    async def aclose(self) -> None:
        """Release network resources held by the client."""


class UnavailableLLMClient(BaseLLMClient):
    """Stands in for a backend that could not be built; every turn fails with ``error``."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def stream_chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        tools: Sequence[dict[str, Any]] | None = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[StreamEvent]:
        raise self.error
        yield  # unreachable; makes this an async generator
