from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from agents.schemas import SetupFrame, ToolCall
    from integrations.customer_context import CustomerProfile

ANONYMOUS_GREETING = (
    "A caller has just connected but we could not identify them from their phone number. "
    "Greet them warmly without using a name, ask for their name, and begin the identity "
    "verification flow by offering to send a one-time code to the number they are calling from."
)

# customParameters consumed by the gateway to pick prompt assets.
ASSET_PARAMETERS = frozenset({"contextFile", "toolManifestFile"})


def tool_definitions_from_manifest(manifest: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert flat manifest entries into chat-completions tool definitions."""

    definitions: list[dict[str, Any]] = []
    for tool in manifest:
        if "function" in tool:
            definitions.append({"type": "function", "function": dict(tool["function"])})
            continue
        function: dict[str, Any] = {
            "name": tool["name"],
            "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
        }
        if tool.get("description"):
            function["description"] = tool["description"]
        definitions.append({"type": "function", "function": function})
    return definitions


def build_messages(system_prompt: str, history: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{"role": "system", "content": system_prompt}, *history]


def assistant_tool_call_message(text: str, calls: Sequence[ToolCall], raw_arguments: Sequence[str]) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": text or None,
        "tool_calls": [
            {
                "id": call.call_id,
                "type": "function",
                "function": {"name": call.name, "arguments": arguments},
            }
            for call, arguments in zip(calls, raw_arguments)
        ],
    }


def tool_message(call_id: str, content: str) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_id, "content": content}


def greeting_prompt(profile: CustomerProfile | None, caller_number: str | None = None) -> str:
    """System prompt that opens the call and starts identity verification."""

    if profile is None:
        return ANONYMOUS_GREETING

    prompt = (
        f"The caller's first name is {profile.first_name}. Greet {profile.first_name} by first name, "
        "then begin the identity verification flow by offering to send a one-time code"
    )
    if caller_number:
        prompt += f" to {caller_number}"
    return prompt + "."


def call_details_message(setup: SetupFrame, profile: CustomerProfile | None) -> str:
    details = {
        "callSid": setup.call_sid,
        "from": setup.from_number,
        "to": setup.to_number,
        "direction": setup.direction,
    }
    if profile is not None:
        details["customer"] = {"firstName": profile.first_name, "lastName": profile.last_name}
    parameters = {
        name: value for name, value in setup.custom_parameters.items() if name not in ASSET_PARAMETERS
    }
    if parameters:
        details["parameters"] = parameters
    return (
        "These are the details of the call and the parameter data needed to complete your objective: "
        f"{json.dumps({k: v for k, v in details.items() if v is not None})}. "
        "Use them when responding to the caller."
    )
