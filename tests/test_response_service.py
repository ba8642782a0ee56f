from __future__ import annotations

import asyncio
import json

from agents.errors import BackendError
from agents.response_service import NOT_EXECUTED, STILL_RUNNING, ResponseService
from agents.schemas import ResponseState, ToolClassification
from agents.tool_dispatcher import ToolDispatcher
from agents.tools import ToolContext, build_default_registry
from fakes import FakeLLM, FakeMessaging, make_settings, wait_until
from llm.base import TextDelta, ToolCallRequest

MANIFEST = [
    {"type": "function", "name": "send-sms", "description": "Send an SMS.", "parameters": {"type": "object"}},
    {"type": "function", "name": "send-dtmf", "parameters": {"type": "object"}},
]


def _service(llm, messaging=None):
    settings = make_settings()
    dispatcher = ToolDispatcher(
        build_default_registry(),
        ToolContext(
            settings=settings,
            messaging=messaging or FakeMessaging(),
            call_sid="CA1",
            caller_number="+61400000000",
        ),
    )
    service = ResponseService(llm, dispatcher, settings, context="SYS", tool_manifest=MANIFEST, label="[CA1]")
    recorded = {"tokens": [], "calls": [], "results": [], "errors": []}
    service.set_content_handler(lambda token, last: recorded["tokens"].append((token, last)))
    service.set_tool_call_handler(recorded["calls"].append)
    service.set_tool_result_handler(lambda result, active: recorded["results"].append((result, active)))
    service.set_error_handler(recorded["errors"].append)
    return service, recorded


async def _until_idle(service):
    await wait_until(lambda: service.state is ResponseState.IDLE)


def test_streams_tokens_and_ends_turn_with_last_marker():
    async def scenario():
        llm = FakeLLM([[TextDelta("Hello "), TextDelta("Des")]])
        service, recorded = _service(llm)
        await service.generate_response("user", "hello")
        assert service.state is ResponseState.GENERATING
        await _until_idle(service)
        return service, recorded, llm

    service, recorded, llm = asyncio.run(scenario())

    assert recorded["tokens"] == [("Hello ", False), ("Des", False), ("", True)]
    assert llm.calls[0][0] == {"role": "system", "content": "SYS"}
    assert llm.calls[0][-1] == {"role": "user", "content": "hello"}
    assert service.history[-1] == {"role": "assistant", "content": "Hello Des"}


def test_manifest_is_offered_in_chat_completions_format():
    async def scenario():
        llm = FakeLLM()
        service, _ = _service(llm)
        await service.generate_response("user", "hi")
        await _until_idle(service)
        return llm

    llm = asyncio.run(scenario())

    assert llm.tools[0][0] == {
        "type": "function",
        "function": {"name": "send-sms", "description": "Send an SMS.", "parameters": {"type": "object"}},
    }


def test_interrupt_before_first_token_emits_nothing():
    async def scenario():
        gate = asyncio.Event()
        llm = FakeLLM([[TextDelta("never spoken")]], gates={0: gate})
        service, recorded = _service(llm)
        await service.generate_response("user", "hello")
        service.interrupt()
        assert service.state is ResponseState.INTERRUPTED
        gate.set()
        await _until_idle(service)
        return recorded

    recorded = asyncio.run(scenario())

    assert recorded["tokens"] == []
    assert recorded["errors"] == []


def test_interrupt_mid_stream_keeps_partial_text_and_stops_tokens():
    async def scenario():
        llm = FakeLLM([[TextDelta("Let me "), TextDelta("check "), TextDelta("that.")]])
        service, recorded = _service(llm)

        def on_content(token, last):
            recorded["tokens"].append((token, last))
            service.interrupt()

        service.set_content_handler(on_content)
        await service.generate_response("user", "what's my balance")
        await _until_idle(service)
        return service, recorded

    service, recorded = asyncio.run(scenario())

    assert recorded["tokens"] == [("Let me ", False)]
    assert service.history[-1] == {"role": "assistant", "content": "Let me "}


def test_new_prompt_supersedes_generation_in_flight():
    async def scenario():
        first_gate = asyncio.Event()
        llm = FakeLLM([[TextDelta("Second answer")]], gates={0: first_gate})
        service, recorded = _service(llm)
        await service.generate_response("user", "first")
        await wait_until(lambda: llm.calls)
        await service.generate_response("user", "second")
        await _until_idle(service)
        return llm, recorded

    llm, recorded = asyncio.run(scenario())

    assert len(llm.calls) == 2
    assert [m["content"] for m in llm.calls[1] if m["role"] == "user"] == ["first", "second"]
    assert recorded["tokens"] == [("Second answer", False), ("", True)]


def test_backend_failure_reaches_error_handler():
    async def scenario():
        llm = FakeLLM(error=RuntimeError("connection refused"))
        service, recorded = _service(llm)
        await service.generate_response("user", "hello")
        await _until_idle(service)
        return recorded

    recorded = asyncio.run(scenario())

    (error,) = recorded["errors"]
    assert isinstance(error, BackendError)
    assert "connection refused" in error.detail
    assert recorded["tokens"] == []


def test_tool_round_feeds_result_back_to_the_model():
    async def scenario():
        llm = FakeLLM(
            [
                [TextDelta("Sending now. "), ToolCallRequest("call_1", "send-dtmf", '{"dtmfDigit": "1"}')],
                [TextDelta("Done.")],
            ]
        )
        service, recorded = _service(llm)
        await service.generate_response("user", "press one")
        await _until_idle(service)
        return service, recorded, llm

    service, recorded, llm = asyncio.run(scenario())

    assert [call.name for call in recorded["calls"]] == ["send-dtmf"]
    ((result, active),) = recorded["results"]
    assert active and result.classification is ToolClassification.RELAY
    assistant, tool = llm.calls[1][-2:]
    assert assistant["tool_calls"][0]["id"] == "call_1"
    assert assistant["content"] == "Sending now. "
    assert tool["role"] == "tool" and tool["tool_call_id"] == "call_1"
    assert json.loads(tool["content"])["success"] is True
    assert recorded["tokens"][-2:] == [("Done.", False), ("", True)]


def test_tool_calls_run_in_issue_order():
    async def scenario():
        messaging = FakeMessaging()
        llm = FakeLLM(
            [
                [
                    ToolCallRequest("call_1", "send-sms", '{"message": "first"}'),
                    ToolCallRequest("call_2", "send-sms", '{"message": "second"}'),
                ],
                [TextDelta("Both sent.")],
            ]
        )
        service, recorded = _service(llm, messaging)
        await service.generate_response("user", "text me twice")
        await _until_idle(service)
        return messaging, recorded

    messaging, recorded = asyncio.run(scenario())

    assert [body for _, body in messaging.sms] == ["first", "second"]
    assert [result.call_id for result, _ in recorded["results"]] == ["call_1", "call_2"]


def test_interrupt_during_dispatch_discards_queued_calls_and_logs_late_result():
    async def scenario():
        sms_gate = asyncio.Event()
        messaging = FakeMessaging(sms_gate=sms_gate)
        llm = FakeLLM(
            [
                [
                    ToolCallRequest("call_1", "send-sms", '{"message": "first"}'),
                    ToolCallRequest("call_2", "send-sms", '{"message": "second"}'),
                ]
            ]
        )
        service, recorded = _service(llm, messaging)
        await service.generate_response("user", "text me")
        await wait_until(lambda: messaging.sms)
        service.interrupt()
        await _until_idle(service)
        tool_messages = [m for m in service.history if m["role"] == "tool"]

        sms_gate.set()
        await wait_until(lambda: recorded["results"])
        return service, recorded, messaging, tool_messages

    service, recorded, messaging, tool_messages = asyncio.run(scenario())

    assert messaging.sms == [("+61400000000", "first")]
    assert [m["content"] for m in tool_messages] == [STILL_RUNNING, NOT_EXECUTED]
    ((result, active),) = recorded["results"]
    assert result.call_id == "call_1" and active is False
    assert service.history[-1]["role"] == "system"
    assert "send-sms" in service.history[-1]["content"]
    assert recorded["tokens"] == []


def test_context_and_tool_updates_apply_to_the_next_turn():
    async def scenario():
        llm = FakeLLM()
        service, _ = _service(llm)
        service.update_context("NEW CONTEXT")
        service.update_tools([{"type": "function", "name": "end-call"}, {"type": "function", "name": "unknown"}])
        service.insert_message("system", "Caller is verified.")
        await service.generate_response("user", "hi")
        await _until_idle(service)
        return llm

    llm = asyncio.run(scenario())

    assert llm.calls[0][0] == {"role": "system", "content": "NEW CONTEXT"}
    assert {"role": "system", "content": "Caller is verified."} in llm.calls[0]
    assert [tool["function"]["name"] for tool in llm.tools[0]] == ["end-call"]


def test_cleanup_cancels_generation_and_closes_backend():
    async def scenario():
        llm = FakeLLM(gates={0: asyncio.Event()})
        service, recorded = _service(llm)
        await service.generate_response("user", "hello")
        await wait_until(lambda: llm.calls)
        await service.cleanup()
        await service.cleanup()
        await service.generate_response("user", "ignored")
        return service, recorded, llm

    service, recorded, llm = asyncio.run(scenario())

    assert llm.closed
    assert len(llm.calls) == 1
    assert service.state is ResponseState.IDLE
    assert recorded["tokens"] == []
