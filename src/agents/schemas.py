"""Pydantic schemas for relay frames, tool calls and session state."""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from agents.errors import ProtocolError

Role = Literal["system", "user", "assistant"]


class SessionState(str, Enum):
    SETUP = "SETUP"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class ResponseState(str, Enum):
    IDLE = "IDLE"
    GENERATING = "GENERATING"
    INTERRUPTED = "INTERRUPTED"


class SilenceState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"
    ESCALATED = "ESCALATED"
    STOPPED = "STOPPED"


class ToolClassification(str, Enum):
    RELAY = "relay"
    SIDE_CHANNEL = "side-channel"


class _InboundFrame(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SetupFrame(_InboundFrame):
    type: Literal["setup"]
    session_id: str | None = Field(default=None, alias="sessionId")
    call_sid: str | None = Field(default=None, alias="callSid")
    from_number: str | None = Field(default=None, alias="from")
    to_number: str | None = Field(default=None, alias="to")
    direction: str | None = None
    custom_parameters: dict[str, Any] = Field(default_factory=dict, alias="customParameters")


class PromptFrame(_InboundFrame):
    type: Literal["prompt"]
    voice_prompt: str = Field(default="", alias="voicePrompt")
    lang: str | None = None
    last: bool | None = None


class InterruptFrame(_InboundFrame):
    type: Literal["interrupt"]
    utterance_until_interrupt: str = Field(default="", alias="utteranceUntilInterrupt")
    duration_until_interrupt_ms: int | None = Field(default=None, alias="durationUntilInterruptMs")


class DtmfFrame(_InboundFrame):
    type: Literal["dtmf"]
    digit: str


class InfoFrame(_InboundFrame):
    type: Literal["info"]
    description: str | None = None


class ErrorFrame(_InboundFrame):
    type: Literal["error"]
    description: str = ""


InboundFrame = Annotated[
    Union[SetupFrame, PromptFrame, InterruptFrame, DtmfFrame, InfoFrame, ErrorFrame],
    Field(discriminator="type"),
]

_INBOUND_ADAPTER: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


def parse_inbound_frame(text: str) -> InboundFrame:
    """Decode one raw WebSocket message into a typed inbound frame.

    Raises ProtocolError for anything that is not a JSON object with a known
    ``type`` tag and valid fields for that tag.
    """

    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ProtocolError("Frame must be a JSON object.")
    if "type" not in payload:
        raise ProtocolError("Frame has no type tag.")

    try:
        return _INBOUND_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        if any(error["type"] == "union_tag_invalid" for error in exc.errors()):
            raise ProtocolError(f"Unrecognized frame type: {payload.get('type')!r}") from exc
        raise ProtocolError(f"Invalid {payload.get('type')} frame: {exc}") from exc


class _OutboundFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ContentTokenFrame(_OutboundFrame):
    type: Literal["content-token"] = "content-token"
    token: str
    last: bool = False


class ToolResultFrame(_OutboundFrame):
    type: Literal["tool-result"] = "tool-result"
    tool_name: str = Field(alias="toolName")
    tool_data: Any = Field(default=None, alias="toolData")


class EndSessionFrame(_OutboundFrame):
    type: Literal["end"] = "end"
    handoff_data: str | None = Field(default=None, alias="handoffData")


class SendDigitsFrame(_OutboundFrame):
    type: Literal["sendDigits"] = "sendDigits"
    digits: str


class PlayMediaFrame(_OutboundFrame):
    type: Literal["play"] = "play"
    source: str
    loop: int | None = None
    preemptible: bool | None = None
    interruptible: bool | None = None


class SwitchLanguageFrame(_OutboundFrame):
    type: Literal["language"] = "language"
    tts_language: str | None = Field(default=None, alias="ttsLanguage")
    transcription_language: str | None = Field(default=None, alias="transcriptionLanguage")


TransportDirective = Annotated[
    Union[EndSessionFrame, SendDigitsFrame, PlayMediaFrame, SwitchLanguageFrame],
    Field(discriminator="type"),
]

OutboundFrame = Union[
    ContentTokenFrame,
    ToolResultFrame,
    EndSessionFrame,
    SendDigitsFrame,
    PlayMediaFrame,
    SwitchLanguageFrame,
]

_DIRECTIVE_ADAPTER: TypeAdapter[TransportDirective] = TypeAdapter(TransportDirective)


def parse_transport_directive(payload: dict[str, Any]) -> OutboundFrame:
    return _DIRECTIVE_ADAPTER.validate_python(payload)


class ToolCall(BaseModel):
    """A tool invocation requested by the model within one turn."""

    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    classification: ToolClassification
    turn_id: int


class ToolResult(BaseModel):
    """Outcome of one tool call, as seen by the session and the model."""

    call_id: str
    name: str
    classification: ToolClassification
    outcome: Literal["success", "error"]
    message: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    turn_id: int

    @property
    def success(self) -> bool:
        return self.outcome == "success"

    def context_content(self) -> str:
        """Serialize the result for the model's conversation context."""

        body = {key: value for key, value in self.payload.items() if key != "outgoing_frame"}
        body.setdefault("success", self.success)
        body.setdefault("message", self.message)
        return json.dumps(body, default=str)

    def outbound_frames(self) -> list[OutboundFrame]:
        """Frames a relay-classified result produces on the transport."""

        directive = self.payload.get("outgoing_frame")
        if self.success and isinstance(directive, dict):
            return [parse_transport_directive(directive)]
        data = {key: value for key, value in self.payload.items() if key != "outgoing_frame"}
        data.setdefault("success", self.success)
        data.setdefault("message", self.message)
        return [ToolResultFrame(tool_name=self.name, tool_data=data)]
