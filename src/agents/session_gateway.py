"""One bridged ConversationRelay connection per call.

The gateway reads inbound frames one at a time, drives the session's
``ResponseService`` and ``SilenceMonitor``, and writes every outbound frame
through a single queue so that each producer's frames reach the transport in
the order they were produced.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, assert_never

from fastapi import WebSocketDisconnect

from agents.errors import BackendError, ProtocolError, RelayError, SetupError
from agents.response_service import ResponseService
from agents.schemas import (
    ContentTokenFrame,
    DtmfFrame,
    EndSessionFrame,
    ErrorFrame,
    InboundFrame,
    InfoFrame,
    InterruptFrame,
    OutboundFrame,
    PromptFrame,
    SessionState,
    SetupFrame,
    ToolCall,
    ToolClassification,
    ToolResult,
    parse_inbound_frame,
)
from agents.silence_monitor import SilenceEvent, SilenceMonitor
from agents.state_utils import call_details_message, greeting_prompt
from agents.tool_dispatcher import ToolDispatcher
from agents.tools import ToolContext, ToolRegistry
from config.settings import Settings
from integrations.customer_context import CustomerContextLoader, CustomerProfile
from integrations.twilio_client import TwilioMessaging
from llm.base import BaseLLMClient, UnavailableLLMClient
from prompts.loader import load_prompt, load_tool_manifest

LOGGER = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


class Transport(Protocol):
    """The subset of ``fastapi.WebSocket`` the gateway relies on."""

    async def receive_text(self) -> str: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


LLMFactory = Callable[[Settings], BaseLLMClient]


@dataclass
class Session:
    session_id: str
    call_sid: str
    from_number: str | None
    to_number: str | None
    response_service: ResponseService
    silence_monitor: SilenceMonitor
    profile: CustomerProfile | None = None
    state: SessionState = SessionState.ACTIVE
    pending_tool_calls: list[str] = field(default_factory=list)
    dtmf_digits: list[str] = field(default_factory=list)


class SessionGateway:
    def __init__(
        self,
        transport: Transport,
        settings: Settings,
        *,
        llm_factory: LLMFactory,
        customer_loader: CustomerContextLoader,
        tool_registry: ToolRegistry,
        messaging: TwilioMessaging,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._llm_factory = llm_factory
        self._customer_loader = customer_loader
        self._tool_registry = tool_registry
        self._messaging = messaging
        self._clock = clock

        self._state = SessionState.SETUP
        self._session: Session | None = None
        self._outbound: asyncio.Queue[OutboundFrame | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._closed = False
        self._log_prefix = "[pending-setup]"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    # Connection lifecycle -----------------------------------------------------

    async def run(self) -> None:
        """Serve the connection until the transport closes or fails."""

        self._writer = asyncio.create_task(self._write_outbound(), name="relay-writer")
        try:
            while self._state is not SessionState.CLOSED:
                try:
                    raw = await self._transport.receive_text()
                except WebSocketDisconnect as exc:
                    LOGGER.info("%s Transport closed (code %s)", self._log_prefix, exc.code)
                    break
                except Exception:
                    LOGGER.exception("%s Transport error", self._log_prefix)
                    break
                await self.handle_raw(raw)
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._state = SessionState.CLOSED

        session = self._session
        if session is not None:
            session.state = SessionState.CLOSED
            session.silence_monitor.cleanup()
            await session.response_service.cleanup()
            if session.pending_tool_calls:
                LOGGER.info(
                    "%s Closing with tool calls still pending: %s",
                    self._log_prefix,
                    ", ".join(session.pending_tool_calls),
                )

        self._outbound.put_nowait(None)
        if self._writer is not None:
            await self._writer
        LOGGER.info("%s Session closed", self._log_prefix)

    # Inbound ------------------------------------------------------------------

    async def handle_raw(self, raw: str) -> None:
        try:
            frame = parse_inbound_frame(raw)
        except ProtocolError as exc:
            if self._session is not None:
                self._session.silence_monitor.reset_timer("unrecognized")
            LOGGER.warning("%s Dropping frame: %s", self._log_prefix, exc.detail)
            return

        try:
            await self.handle_frame(frame)
        except SetupError as exc:
            LOGGER.error("%s %s Closing connection.", self._log_prefix, exc.detail)
            self._state = SessionState.CLOSED
            await self._transport.close(code=POLICY_VIOLATION, reason=exc.detail)
        except Exception:
            LOGGER.exception("%s Failed to handle %s frame", self._log_prefix, frame.type)

    async def handle_frame(self, frame: InboundFrame) -> None:
        session = self._session
        if session is None:
            if isinstance(frame, SetupFrame):
                await self._setup(frame)
            else:
                LOGGER.warning("%s Dropping %s frame received before setup", self._log_prefix, frame.type)
            return

        session.silence_monitor.reset_timer(frame.type)

        if isinstance(frame, SetupFrame):
            LOGGER.warning("%s Ignoring repeated setup frame", self._log_prefix)
        elif isinstance(frame, PromptFrame):
            text = frame.voice_prompt.strip()
            if not text:
                LOGGER.debug("%s Ignoring empty prompt", self._log_prefix)
                return
            LOGGER.info("%s Caller: %s", self._log_prefix, text)
            await session.response_service.generate_response("user", text)
        elif isinstance(frame, InterruptFrame):
            LOGGER.info(
                "%s Caller interrupted after %r", self._log_prefix, frame.utterance_until_interrupt
            )
            session.response_service.interrupt()
        elif isinstance(frame, DtmfFrame):
            session.dtmf_digits.append(frame.digit)
            LOGGER.info("%s DTMF digit %s", self._log_prefix, frame.digit)
        elif isinstance(frame, InfoFrame):
            LOGGER.debug("%s Info frame: %s", self._log_prefix, frame.model_dump(by_alias=True))
        elif isinstance(frame, ErrorFrame):
            LOGGER.error("%s Transport reported an error: %s", self._log_prefix, frame.description)
        else:
            assert_never(frame)

    async def _setup(self, frame: SetupFrame) -> None:
        call_sid = (frame.call_sid or "").strip()
        if not call_sid:
            raise SetupError("Setup frame is missing callSid.")

        self._log_prefix = f"[{call_sid}]"
        LOGGER.info(
            "%s Setup from %s to %s (%s)",
            self._log_prefix,
            frame.from_number,
            frame.to_number,
            frame.direction or "unknown direction",
        )

        profile = await self._load_profile(frame.from_number)
        dispatcher = ToolDispatcher(
            self._tool_registry,
            ToolContext(
                settings=self._settings,
                messaging=self._messaging,
                call_sid=call_sid,
                caller_number=frame.from_number,
            ),
        )
        try:
            context = load_prompt(self._settings.llm_context_file)
            manifest = load_tool_manifest(self._settings.llm_manifest_file)
        except RuntimeError as exc:
            raise SetupError(str(exc)) from exc
        try:
            llm = self._llm_factory(self._settings)
        except RelayError as exc:
            LOGGER.error("%s Model backend unavailable: %s", self._log_prefix, exc.detail)
            llm = UnavailableLLMClient(BackendError(f"Model backend unavailable: {exc.detail}"))

        response_service = ResponseService(
            llm,
            dispatcher,
            self._settings,
            context=context,
            tool_manifest=manifest,
            label=self._log_prefix,
        )
        self._apply_custom_assets(response_service, frame.custom_parameters)
        response_service.set_content_handler(self._on_content)
        response_service.set_tool_call_handler(self._on_tool_call)
        response_service.set_tool_result_handler(self._on_tool_result)
        response_service.set_error_handler(self._on_error)

        silence_monitor = SilenceMonitor(
            self._settings.silence_seconds_threshold,
            self._settings.silence_retry_limit,
            clock=self._clock,
            label=self._log_prefix,
        )
        self._session = Session(
            session_id=frame.session_id or call_sid,
            call_sid=call_sid,
            from_number=frame.from_number,
            to_number=frame.to_number,
            response_service=response_service,
            silence_monitor=silence_monitor,
            profile=profile,
        )
        self._state = SessionState.ACTIVE

        response_service.insert_message("system", call_details_message(frame, profile))
        silence_monitor.start_monitoring(self._on_silence)
        await response_service.generate_response("system", greeting_prompt(profile, frame.from_number))

    async def _load_profile(self, phone_number: str | None) -> CustomerProfile | None:
        try:
            return await self._customer_loader.load(phone_number)
        except Exception:
            LOGGER.exception("%s Customer lookup failed; using anonymous greeting", self._log_prefix)
            return None

    def _apply_custom_assets(self, response_service: ResponseService, parameters: dict[str, Any]) -> None:
        context_file = parameters.get("contextFile")
        if context_file:
            try:
                response_service.update_context(load_prompt(str(context_file)))
            except RuntimeError as exc:
                LOGGER.warning("%s %s; keeping default context", self._log_prefix, exc)

        manifest_file = parameters.get("toolManifestFile")
        if manifest_file:
            try:
                response_service.update_tools(load_tool_manifest(str(manifest_file)))
            except RuntimeError as exc:
                LOGGER.warning("%s %s; keeping default tool manifest", self._log_prefix, exc)

    # Response service handlers ------------------------------------------------

    def _on_content(self, token: str, last: bool) -> None:
        self._send(ContentTokenFrame(token=token, last=last))

    def _on_tool_call(self, call: ToolCall) -> None:
        if self._session is not None:
            self._session.pending_tool_calls.append(call.call_id)
        LOGGER.info("%s Model requested %s (%s)", self._log_prefix, call.name, call.classification.value)

    def _on_tool_result(self, result: ToolResult, active: bool) -> None:
        if self._session is not None and result.call_id in self._session.pending_tool_calls:
            self._session.pending_tool_calls.remove(result.call_id)

        if not active:
            LOGGER.info(
                "%s Result of %s belongs to an interrupted turn; not spoken", self._log_prefix, result.name
            )
            return
        if result.classification is ToolClassification.SIDE_CHANNEL:
            LOGGER.info("%s Side-channel result for %s: %s", self._log_prefix, result.name, result.outcome)
            return
        for frame in result.outbound_frames():
            self._send(frame)

    def _on_error(self, error: RelayError) -> None:
        LOGGER.error("%s Response generation failed: %s", self._log_prefix, error.detail)
        apology = self._settings.apology_message
        if self._session is not None:
            self._session.response_service.insert_message("assistant", apology)
        self._send(ContentTokenFrame(token=apology, last=True))

    def _on_silence(self, event: SilenceEvent) -> None:
        session = self._session
        if session is None:
            return
        if event.escalated:
            LOGGER.warning("%s Caller unresponsive after %s timeouts; ending call", self._log_prefix, event.timeouts)
            session.response_service.interrupt()
            handoff = json.dumps({"reasonCode": "unresponsive", "reason": event.message})
            self._send(EndSessionFrame(handoff_data=handoff))
            return
        session.response_service.insert_message("assistant", event.message)
        self._send(ContentTokenFrame(token=event.message, last=True))

    # Outbound -----------------------------------------------------------------

    def _send(self, frame: OutboundFrame) -> None:
        if self._state is SessionState.CLOSED:
            LOGGER.debug("%s Dropping %s frame after close", self._log_prefix, frame.type)
            return
        self._outbound.put_nowait(frame)

    async def _write_outbound(self) -> None:
        while True:
            frame = await self._outbound.get()
            if frame is None:
                return
            try:
                await self._transport.send_text(frame.to_wire())
            except Exception:
                LOGGER.warning("%s Failed to write %s frame; stopping writer", self._log_prefix, frame.type)
                return
