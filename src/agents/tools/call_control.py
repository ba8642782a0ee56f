"""Tools that steer the live call through transport directives."""

from __future__ import annotations

import json
from typing import Any

from agents.errors import ToolExecutionError
from agents.schemas import ToolClassification
from agents.tools.registry import ToolContext, ToolRegistry


def _handoff_data(reason_code: str, reason: str, **extra: Any) -> str:
    return json.dumps({"reasonCode": reason_code, "reason": reason, **extra})


async def live_agent_handoff(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    summary = str(arguments.get("summary") or "")
    return {
        "success": True,
        "message": "Live agent handoff initiated",
        "summary": summary,
        "outgoing_frame": {
            "type": "end",
            "handoffData": _handoff_data("live-agent-handoff", summary),
        },
    }


async def end_call(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    summary = str(arguments.get("summary") or "")
    return {
        "success": True,
        "message": "Ending the call",
        "outgoing_frame": {
            "type": "end",
            "handoffData": _handoff_data(
                "end-call", "Ending the call", conversationSummary=summary
            ),
        },
    }


async def send_dtmf(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    digits = str(arguments.get("dtmfDigit") or "").strip()
    if not digits:
        raise ToolExecutionError("At least one DTMF digit is required.")
    return {
        "success": True,
        "message": f"Sent DTMF digits {digits}",
        "outgoing_frame": {"type": "sendDigits", "digits": digits},
    }


async def switch_language(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    tts_language = arguments.get("ttsLanguage") or None
    transcription_language = arguments.get("transcriptionLanguage") or None
    if not tts_language and not transcription_language:
        raise ToolExecutionError(
            "At least one language parameter (ttsLanguage or transcriptionLanguage) must be provided"
        )
    return {
        "success": True,
        "message": "Language switched successfully",
        "ttsLanguage": tts_language,
        "transcriptionLanguage": transcription_language,
        "outgoing_frame": {
            "type": "language",
            "ttsLanguage": tts_language,
            "transcriptionLanguage": transcription_language,
        },
    }


async def play_media(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    source = str(arguments.get("source") or "").strip()
    if not source:
        raise ToolExecutionError("Source URL is required to play media")
    frame: dict[str, Any] = {"type": "play", "source": source}
    for key in ("loop", "preemptible", "interruptible"):
        if arguments.get(key) is not None:
            frame[key] = arguments[key]
    return {
        "success": True,
        "message": "Media playback initiated successfully",
        "source": source,
        "outgoing_frame": frame,
    }


def register_call_control_tools(registry: ToolRegistry) -> None:
    registry.register("live-agent-handoff", ToolClassification.RELAY)(live_agent_handoff)
    registry.register("end-call", ToolClassification.RELAY)(end_call)
    registry.register("send-dtmf", ToolClassification.RELAY)(send_dtmf)
    registry.register("switch-language", ToolClassification.RELAY)(switch_language)
    registry.register("play-media", ToolClassification.RELAY)(play_media)
