"""Execution of model-requested tools against external collaborators."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from agents.errors import RelayError
from agents.schemas import ToolCall, ToolClassification, ToolResult, parse_transport_directive
from agents.tools import ToolContext, ToolRegistry
from llm.base import ToolCallRequest

LOGGER = logging.getLogger(__name__)


class ToolDispatcher:
    """Resolves, runs and classifies tool calls for one session.

    ``execute`` never raises: every failure becomes an ``error`` outcome that
    the model can narrate.
    """

    def __init__(self, registry: ToolRegistry, context: ToolContext) -> None:
        self._registry = registry
        self._context = context

    def classify(self, name: str) -> ToolClassification:
        spec = self._registry.get(name)
        if spec is None:
            return ToolClassification.SIDE_CHANNEL
        return spec.classification

    def available(self, manifest: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Filter a tool manifest down to tools that have a registered handler."""

        offered: list[dict[str, Any]] = []
        for tool in manifest:
            name = tool.get("name")
            if name in self._registry:
                offered.append(tool)
            else:
                LOGGER.warning("Manifest tool %r has no registered handler; not offered.", name)
        return offered

    def build_call(self, request: ToolCallRequest, turn_id: int) -> ToolCall:
        try:
            arguments = json.loads(request.arguments or "{}")
        except json.JSONDecodeError:
            LOGGER.warning("Tool %s sent undecodable arguments: %s", request.name, request.arguments)
            arguments = {"_raw_arguments": request.arguments}
        if not isinstance(arguments, dict):
            arguments = {"_raw_arguments": request.arguments}

        return ToolCall(
            call_id=request.call_id,
            name=request.name,
            arguments=arguments,
            classification=self.classify(request.name),
            turn_id=turn_id,
        )

    async def execute(self, call: ToolCall) -> ToolResult:
        log_prefix = f"[{self._context.call_sid}]"
        spec = self._registry.get(call.name)
        if spec is None:
            LOGGER.error("%s Model requested unknown tool %r", log_prefix, call.name)
            return self._error(call, f"Unknown tool: {call.name}")
        if "_raw_arguments" in call.arguments:
            return self._error(call, f"Arguments for {call.name} were not valid JSON.")

        LOGGER.info("%s Executing %s tool %s", log_prefix, call.classification.value, call.name)
        try:
            payload = await spec.handler(call.arguments, self._context)
        except RelayError as exc:
            LOGGER.warning("%s Tool %s failed: %s", log_prefix, call.name, exc.detail)
            return self._error(call, exc.detail)
        except Exception as exc:
            LOGGER.exception("%s Tool %s raised", log_prefix, call.name)
            return self._error(call, f"{call.name} failed: {exc}")

        if not isinstance(payload, dict):
            return self._error(call, f"{call.name} returned an invalid result.")

        directive = payload.get("outgoing_frame")
        if directive is not None:
            try:
                parse_transport_directive(directive)
            except ValidationError as exc:
                LOGGER.error("%s Tool %s produced an invalid directive: %s", log_prefix, call.name, exc)
                return self._error(call, f"{call.name} produced an invalid call directive.")

        success = bool(payload.get("success", True))
        result = ToolResult(
            call_id=call.call_id,
            name=call.name,
            classification=call.classification,
            outcome="success" if success else "error",
            message=str(payload.get("message", "")),
            payload=payload,
            turn_id=call.turn_id,
        )
        LOGGER.info("%s Tool %s finished: %s", log_prefix, call.name, result.outcome)
        return result

    def _error(self, call: ToolCall, message: str) -> ToolResult:
        return ToolResult(
            call_id=call.call_id,
            name=call.name,
            classification=call.classification,
            outcome="error",
            message=message,
            payload={"success": False, "message": message},
            turn_id=call.turn_id,
        )
