from __future__ import annotations

import asyncio
import json

import pytest

from agents.schemas import ToolClassification
from agents.tool_dispatcher import ToolDispatcher
from agents.tools import ToolContext, ToolRegistry, build_default_registry
from fakes import FakeMessaging, make_settings
from llm.base import ToolCallRequest


def _run(coro):
    return asyncio.run(coro)


def _dispatcher(messaging=None, registry=None):
    context = ToolContext(
        settings=make_settings(),
        messaging=messaging or FakeMessaging(),
        call_sid="CA1",
        caller_number="+61400000000",
    )
    return ToolDispatcher(registry or build_default_registry(), context)


def _call(dispatcher, name, arguments):
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return dispatcher.build_call(ToolCallRequest(call_id="call_1", name=name, arguments=raw), turn_id=1)


def test_default_registry_classifications():
    dispatcher = _dispatcher()

    assert dispatcher.classify("send-sms") is ToolClassification.SIDE_CHANNEL
    for name in (
        "send-verification",
        "check-verification",
        "live-agent-handoff",
        "end-call",
        "send-dtmf",
        "switch-language",
        "play-media",
    ):
        assert dispatcher.classify(name) is ToolClassification.RELAY


def test_registering_a_name_twice_is_rejected():
    registry = build_default_registry()

    with pytest.raises(ValueError):
        registry.register("send-sms", ToolClassification.RELAY)(lambda arguments, context: None)

    assert registry.get("send-sms").classification is ToolClassification.SIDE_CHANNEL


def test_manifest_is_filtered_to_registered_tools():
    dispatcher = _dispatcher()
    manifest = [{"type": "function", "name": "send-sms"}, {"type": "function", "name": "create-ticket"}]

    assert [tool["name"] for tool in dispatcher.available(manifest)] == ["send-sms"]


def test_send_sms_uses_caller_number_by_default():
    messaging = FakeMessaging()
    dispatcher = _dispatcher(messaging)

    result = _run(dispatcher.execute(_call(dispatcher, "send-sms", {"message": "Your booking is confirmed"})))

    assert result.success
    assert result.classification is ToolClassification.SIDE_CHANNEL
    assert messaging.sms == [("+61400000000", "Your booking is confirmed")]


def test_failing_tool_yields_error_result():
    dispatcher = _dispatcher(FakeMessaging(fail_sms=True))

    result = _run(dispatcher.execute(_call(dispatcher, "send-sms", {"message": "hi"})))

    assert result.outcome == "error"
    assert "Twilio rejected the message" in result.message
    assert json.loads(result.context_content())["success"] is False


def test_handler_validation_error_is_reported():
    dispatcher = _dispatcher()

    result = _run(dispatcher.execute(_call(dispatcher, "play-media", {})))

    assert not result.success
    assert result.message == "Source URL is required to play media"


def test_unknown_tool_and_bad_arguments_yield_errors():
    dispatcher = _dispatcher()

    unknown = _run(dispatcher.execute(_call(dispatcher, "create-ticket", {})))
    malformed = _run(dispatcher.execute(_call(dispatcher, "send-dtmf", "{not json")))

    assert unknown.outcome == "error"
    assert unknown.classification is ToolClassification.SIDE_CHANNEL
    assert malformed.outcome == "error"
    assert "not valid JSON" in malformed.message


def test_check_verification_reports_verified_flag():
    messaging = FakeMessaging()
    messaging.verification_status = "pending"
    dispatcher = _dispatcher(messaging)

    result = _run(dispatcher.execute(_call(dispatcher, "check-verification", {"code": "123456"})))

    assert result.success
    assert result.payload["verified"] is False
    assert messaging.checks == [("+61400000000", "123456")]


def test_call_control_tools_emit_directives():
    dispatcher = _dispatcher()

    end = _run(dispatcher.execute(_call(dispatcher, "end-call", {"summary": "Booked a cleaning"})))
    language = _run(dispatcher.execute(_call(dispatcher, "switch-language", {"ttsLanguage": "de-DE"})))

    (end_frame,) = end.outbound_frames()
    assert end_frame.type == "end"
    assert json.loads(end_frame.handoff_data)["reasonCode"] == "end-call"
    (language_frame,) = language.outbound_frames()
    assert language_frame.tts_language == "de-DE"


def test_invalid_directive_from_custom_tool_is_an_error():
    registry = ToolRegistry()

    @registry.register("broken", ToolClassification.RELAY)
    async def broken(arguments, context):
        return {"success": True, "outgoing_frame": {"type": "teleport"}}

    dispatcher = _dispatcher(registry=registry)
    result = _run(dispatcher.execute(_call(dispatcher, "broken", {})))

    assert result.outcome == "error"
