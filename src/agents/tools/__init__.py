"""Tools the model can invoke during a call."""

from __future__ import annotations

from agents.tools.call_control import register_call_control_tools
from agents.tools.messaging import register_messaging_tools
from agents.tools.registry import ToolContext, ToolHandler, ToolRegistry, ToolSpec

__all__ = [
    "ToolContext",
    "ToolHandler",
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
]


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_messaging_tools(registry)
    register_call_control_tools(registry)
    return registry
