"""Registry binding tool names to handlers and their fixed classification."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agents.schemas import ToolClassification

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings
    from integrations.twilio_client import TwilioMessaging


@dataclass(frozen=True)
class ToolContext:
    """Per-session facts and collaborators available to tool handlers."""

    settings: Settings
    messaging: TwilioMessaging
    call_sid: str
    caller_number: str | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    handler: ToolHandler
    classification: ToolClassification


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(
        self, name: str, classification: ToolClassification
    ) -> Callable[[ToolHandler], ToolHandler]:
        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add(ToolSpec(name=name, handler=handler, classification=classification))
            return handler

        return decorator

    def add(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
