"""Conversation state and streamed generation for a single call.

A ``ResponseService`` owns the model-visible history of one session and runs
at most one generation task at a time::

    IDLE --generate--> GENERATING --complete|error--> IDLE
                       GENERATING --interrupt--> INTERRUPTED --task settles--> IDLE

Output reaches the session through handlers registered with the ``set_*``
methods. Every emission carries the turn it belongs to, and emissions from a
turn that is no longer active are dropped, so nothing produced before an
interrupt is spoken after it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field
from functools import partial
from typing import Any, get_args

from agents.errors import BackendError, RelayError
from agents.schemas import ResponseState, Role, ToolCall, ToolResult
from agents.state_utils import (
    assistant_tool_call_message,
    build_messages,
    tool_definitions_from_manifest,
    tool_message,
)
from agents.tool_dispatcher import ToolDispatcher
from config.settings import Settings
from llm.base import BaseLLMClient, StreamCompleted, TextDelta, ToolCallRequest

LOGGER = logging.getLogger(__name__)

ContentHandler = Callable[[str, bool], None]
ToolCallHandler = Callable[[ToolCall], None]
ToolResultHandler = Callable[[ToolResult, bool], None]
ErrorHandler = Callable[[RelayError], None]

NOT_EXECUTED = "Not executed: the caller interrupted before this tool ran."
STILL_RUNNING = "Still running: the caller interrupted; the result will be reported when it finishes."


@dataclass
class _Turn:
    turn_id: int
    system_prompt: str
    tools: list[dict[str, Any]]
    text: list[str] = field(default_factory=list)
    round_text: list[str] = field(default_factory=list)
    unanswered: dict[str, ToolCall] = field(default_factory=dict)
    running: dict[str, asyncio.Task] = field(default_factory=dict)


class ResponseService:
    def __init__(
        self,
        llm: BaseLLMClient,
        dispatcher: ToolDispatcher,
        settings: Settings,
        *,
        context: str,
        tool_manifest: Iterable[dict[str, Any]] = (),
        label: str = "",
    ) -> None:
        self._llm = llm
        self._dispatcher = dispatcher
        self._temperature = settings.llm_temperature
        self._max_tool_rounds = settings.llm_max_tool_rounds
        self._label = label

        self._system_prompt = context
        self._tools = tool_definitions_from_manifest(dispatcher.available(list(tool_manifest)))
        self._history: list[dict[str, Any]] = []
        self._deferred: list[dict[str, Any]] = []

        self._state = ResponseState.IDLE
        self._turn_counter = 0
        self._active_turn: _Turn | None = None
        self._open_turn: _Turn | None = None
        self._generation: asyncio.Task | None = None
        self._closed = False

        self._on_content: ContentHandler | None = None
        self._on_tool_call: ToolCallHandler | None = None
        self._on_tool_result: ToolResultHandler | None = None
        self._on_error: ErrorHandler | None = None

    # Handlers -----------------------------------------------------------------

    def set_content_handler(self, handler: ContentHandler) -> None:
        self._on_content = handler

    def set_tool_call_handler(self, handler: ToolCallHandler) -> None:
        self._on_tool_call = handler

    def set_tool_result_handler(self, handler: ToolResultHandler) -> None:
        """``handler(result, active)``; ``active`` is False for results of an interrupted turn."""

        self._on_tool_result = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        self._on_error = handler

    # State --------------------------------------------------------------------

    @property
    def state(self) -> ResponseState:
        return self._state

    @property
    def turn_id(self) -> int:
        return self._turn_counter

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def tools(self) -> list[dict[str, Any]]:
        return list(self._tools)

    @property
    def history(self) -> list[dict[str, Any]]:
        return build_messages(self._system_prompt, self._history)

    def _transition(self, state: ResponseState) -> None:
        LOGGER.debug("%s Response state %s -> %s", self._label, self._state.value, state.value)
        self._state = state

    # Operations ---------------------------------------------------------------

    async def generate_response(self, role: Role, prompt: str) -> None:
        """Append ``prompt`` to the history and start a new turn.

        A generation already in flight is interrupted and allowed to settle
        first, so a turn's context always includes what the previous turn left.
        """

        if self._closed:
            LOGGER.warning("%s Ignoring prompt after cleanup", self._label)
            return
        if role not in get_args(Role):
            raise ValueError(f"Unsupported role: {role}")

        if self._state is ResponseState.GENERATING:
            LOGGER.info("%s New prompt while generating; interrupting turn %s", self._label, self._turn_counter)
            self.interrupt()
        previous = self._generation
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        if self._closed:
            return

        self._history.append({"role": role, "content": prompt})
        self._turn_counter += 1
        turn = _Turn(
            turn_id=self._turn_counter,
            system_prompt=self._system_prompt,
            tools=list(self._tools),
        )
        self._active_turn = turn
        self._transition(ResponseState.GENERATING)
        task = asyncio.create_task(self._run_turn(turn), name=f"generation-{turn.turn_id}")
        self._generation = task
        task.add_done_callback(self._on_generation_done)

    def interrupt(self) -> None:
        if self._state is not ResponseState.GENERATING:
            LOGGER.debug("%s Interrupt with no generation in flight", self._label)
            return
        self._transition(ResponseState.INTERRUPTED)
        self._active_turn = None
        if self._generation is not None:
            self._generation.cancel()

    def insert_message(self, role: Role, message: str) -> None:
        """Add a message to the history without triggering a generation."""

        if role not in get_args(Role):
            raise ValueError(f"Unsupported role: {role}")
        self._append({"role": role, "content": message})

    def update_context(self, context: str) -> None:
        """Replace the system prompt used by subsequent turns."""

        self._system_prompt = context
        LOGGER.info("%s System prompt updated", self._label)

    def update_tools(self, manifest: Iterable[dict[str, Any]]) -> None:
        """Replace the tools offered to the model by subsequent turns."""

        self._tools = tool_definitions_from_manifest(self._dispatcher.available(list(manifest)))
        LOGGER.info("%s Tool manifest updated (%s tools)", self._label, len(self._tools))

    async def cleanup(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._active_turn = None

        task = self._generation
        if task is not None and not task.done():
            if self._state is ResponseState.GENERATING:
                self._transition(ResponseState.INTERRUPTED)
            task.cancel()
            await asyncio.wait({task})

        self._on_content = None
        self._on_tool_call = None
        self._on_tool_result = None
        self._on_error = None
        try:
            await self._llm.aclose()
        except Exception:
            LOGGER.exception("%s Failed to close model client", self._label)
        LOGGER.info("%s Response service cleaned up", self._label)

    # Turn execution -----------------------------------------------------------

    async def _run_turn(self, turn: _Turn) -> None:
        try:
            for round_index in range(1, self._max_tool_rounds + 1):
                calls = await self._stream_round(turn)
                if not calls:
                    break
                await self._dispatch(turn, calls)
                if round_index == self._max_tool_rounds:
                    LOGGER.warning(
                        "%s Turn %s reached the tool round limit (%s)",
                        self._label,
                        turn.turn_id,
                        self._max_tool_rounds,
                    )
            self._finish(turn)
        except asyncio.CancelledError:
            LOGGER.info("%s Turn %s interrupted", self._label, turn.turn_id)
            self._abandon(turn)
            raise
        except Exception as exc:
            LOGGER.exception("%s Turn %s failed", self._label, turn.turn_id)
            active = turn is self._active_turn
            self._abandon(turn)
            if active and self._on_error is not None:
                error = exc if isinstance(exc, RelayError) else BackendError(str(exc))
                self._on_error(error)

    async def _stream_round(self, turn: _Turn) -> list[ToolCall]:
        requests: list[ToolCallRequest] = []
        turn.round_text = []
        stream = self._llm.stream_chat(
            build_messages(turn.system_prompt, self._history),
            tools=turn.tools or None,
            temperature=self._temperature,
        )
        async with aclosing(stream):
            async for event in stream:
                if isinstance(event, TextDelta):
                    if not event.text:
                        continue
                    turn.round_text.append(event.text)
                    turn.text.append(event.text)
                    self._emit_content(turn, event.text, last=False)
                elif isinstance(event, ToolCallRequest):
                    requests.append(event)
                elif isinstance(event, StreamCompleted):
                    LOGGER.debug("%s Stream finished: %s", self._label, event.finish_reason)

        text = "".join(turn.round_text)
        turn.round_text = []
        if not requests:
            if text:
                self._history.append({"role": "assistant", "content": text})
            return []

        calls = [self._dispatcher.build_call(request, turn.turn_id) for request in requests]
        self._history.append(
            assistant_tool_call_message(text, calls, [request.arguments for request in requests])
        )
        for call in calls:
            turn.unanswered[call.call_id] = call
        self._open_turn = turn
        return calls

    async def _dispatch(self, turn: _Turn, calls: list[ToolCall]) -> None:
        """Run the round's tool calls one at a time, in the order requested.

        Each call runs in its own task and is awaited through ``shield`` so that
        interrupting the turn never cancels a side effect that has started.
        """

        for call in calls:
            if self._on_tool_call is not None and turn is self._active_turn:
                self._on_tool_call(call)
            task = asyncio.create_task(self._dispatcher.execute(call), name=f"tool-{call.name}")
            turn.running[call.call_id] = task
            task.add_done_callback(partial(self._on_tool_done, turn, call))
            result = await asyncio.shield(task)

            turn.running.pop(call.call_id, None)
            turn.unanswered.pop(call.call_id, None)
            self._history.append(tool_message(call.call_id, result.context_content()))
            if not turn.unanswered:
                self._close_tool_round(turn)
            self._emit_tool_result(result, active=turn is self._active_turn)

    def _finish(self, turn: _Turn) -> None:
        if turn is not self._active_turn:
            return
        self._emit_content(turn, "", last=True)
        LOGGER.info("%s Turn %s complete: %s", self._label, turn.turn_id, "".join(turn.text))

    def _abandon(self, turn: _Turn) -> None:
        """Close out a turn that did not complete normally.

        Partial assistant text is kept and every tool call the model asked for
        is answered, so the history stays valid for the next request.
        """

        if turn.round_text:
            self._history.append({"role": "assistant", "content": "".join(turn.round_text)})
            turn.round_text = []

        for call_id, call in list(turn.unanswered.items()):
            task = turn.running.get(call_id)
            if task is None:
                LOGGER.info("%s Discarding queued tool call %s (%s)", self._label, call.name, call_id)
                self._history.append(tool_message(call_id, NOT_EXECUTED))
            elif task.done() and not task.cancelled():
                result = task.result()
                turn.running.pop(call_id, None)
                self._history.append(tool_message(call_id, result.context_content()))
                self._emit_tool_result(result, active=False)
            else:
                self._history.append(tool_message(call_id, STILL_RUNNING))
        turn.unanswered.clear()
        self._close_tool_round(turn)

    def _on_tool_done(self, turn: _Turn, call: ToolCall, task: asyncio.Task) -> None:
        if turn is self._active_turn or call.call_id not in turn.running:
            return
        turn.running.pop(call.call_id, None)
        if task.cancelled():
            return

        result: ToolResult = task.result()
        LOGGER.info(
            "%s Tool %s from interrupted turn %s finished (%s); result not spoken",
            self._label,
            call.name,
            turn.turn_id,
            result.outcome,
        )
        if self._closed:
            return
        self._append(
            {
                "role": "system",
                "content": (
                    f"The {call.name} tool requested before the caller interrupted has finished: "
                    f"{result.context_content()}"
                ),
            }
        )
        self._emit_tool_result(result, active=False)

    def _on_generation_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("%s Generation task crashed: %r", self._label, task.exception())
        if task is self._generation:
            self._generation = None
            self._active_turn = None
            if self._state is not ResponseState.IDLE:
                self._transition(ResponseState.IDLE)

    # Helpers ------------------------------------------------------------------

    def _append(self, message: dict[str, Any]) -> None:
        # Tool messages must directly follow the assistant message that requested them.
        if self._open_turn is not None:
            self._deferred.append(message)
        else:
            self._history.append(message)

    def _close_tool_round(self, turn: _Turn) -> None:
        if self._open_turn is turn:
            self._open_turn = None
        if self._deferred:
            self._history.extend(self._deferred)
            self._deferred.clear()

    def _emit_content(self, turn: _Turn, token: str, *, last: bool) -> None:
        if turn is not self._active_turn or self._on_content is None:
            return
        self._on_content(token, last)

    def _emit_tool_result(self, result: ToolResult, *, active: bool) -> None:
        if self._on_tool_result is not None:
            self._on_tool_result(result, active)
