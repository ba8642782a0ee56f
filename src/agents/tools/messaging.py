"""Tools backed by Twilio messaging and Verify."""

from __future__ import annotations

import logging
from typing import Any

from agents.errors import ToolExecutionError
from agents.schemas import ToolClassification
from agents.tools.registry import ToolContext, ToolRegistry

LOGGER = logging.getLogger(__name__)

ALLOWED_VERIFY_CHANNELS = {"sms", "call"}


def _recipient(arguments: dict[str, Any], context: ToolContext) -> str:
    to = str(arguments.get("to") or context.caller_number or "").strip()
    if not to:
        raise ToolExecutionError("A destination phone number is required.")
    return to


async def send_sms(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    to = _recipient(arguments, context)
    body = str(arguments.get("message") or "").strip()
    if not body:
        raise ToolExecutionError("Message text is required to send an SMS.")

    sid = await context.messaging.send_sms(to, body)
    return {"success": True, "message": "SMS sent successfully", "recipient": to, "sid": sid}


async def send_verification(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    to = _recipient(arguments, context)
    channel = str(arguments.get("channel") or "sms").lower()
    if channel not in ALLOWED_VERIFY_CHANNELS:
        raise ToolExecutionError(f"Unsupported verification channel: {channel}")

    verification_sid = await context.messaging.send_verification(to, channel)
    return {
        "success": True,
        "message": f"Verification code sent successfully via {channel}",
        "recipient": to,
        "channel": channel,
        "verification_sid": verification_sid,
    }


async def check_verification(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    to = _recipient(arguments, context)
    code = str(arguments.get("code") or "").strip()
    if not code:
        raise ToolExecutionError("A verification code is required.")

    LOGGER.info("Checking verification for %s (code redacted)", to)
    status = await context.messaging.check_verification(to, code)
    verified = status == "approved"
    return {
        "success": True,
        "message": "Verification successful" if verified else "Verification failed - invalid code",
        "verified": verified,
        "recipient": to,
        "status": status,
    }


def register_messaging_tools(registry: ToolRegistry) -> None:
    registry.register("send-sms", ToolClassification.SIDE_CHANNEL)(send_sms)
    registry.register("send-verification", ToolClassification.RELAY)(send_verification)
    registry.register("check-verification", ToolClassification.RELAY)(check_verification)
