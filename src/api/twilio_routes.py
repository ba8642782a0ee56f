"""Twilio Voice integration.

This module provides:
- Voice webhook returning ConversationRelay TwiML for inbound calls.
- Outbound call endpoint whose TwiML connects to the same relay.
- The ConversationRelay WebSocket, one ``SessionGateway`` per connection.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, WebSocket

from agents.errors import ConfigurationError
from agents.session_gateway import SessionGateway
from api.dependencies import RelayComponents, get_app_settings, get_components
from api.schemas import OutboundCallRequest, OutboundCallResponse
from config.settings import Settings
from integrations.twilio_client import to_ws_url, twiml_conversation_relay

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

RELAY_PATH = "/api/twilio/conversation-relay"


def _relay_url(request: Request | None, settings: Settings) -> str:
    if settings.public_base_url:
        return to_ws_url(f"{settings.public_base_url}{RELAY_PATH}")
    if request is None:
        raise ConfigurationError("PUBLIC_BASE_URL is required to build the relay URL")
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    return to_ws_url(str(request.base_url).rstrip("/") + RELAY_PATH)


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


@router.post("/voice")
async def twilio_voice_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip()
    parameters = {"callReference": call_sid} if call_sid else {}
    LOGGER.info("Incoming call %s from %s", call_sid or "unknown", form.get("From"))

    return _twiml_response(
        twiml_conversation_relay(
            relay_url=_relay_url(request, settings),
            settings=settings,
            parameters=parameters,
        )
    )


@router.post("/calls", response_model=OutboundCallResponse)
async def create_outbound_call(
    payload: OutboundCallRequest,
    x_api_key: Annotated[str | None, Header()] = None,
    components: RelayComponents = Depends(get_components),
) -> OutboundCallResponse:
    settings = components.settings

    if settings.twilio_outbound_api_key and x_api_key != settings.twilio_outbound_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")

    parameters = dict(payload.properties)
    if payload.call_reference:
        parameters["callReference"] = payload.call_reference
    try:
        twiml = twiml_conversation_relay(
            relay_url=_relay_url(None, settings),
            settings=settings,
            parameters=parameters,
        )
        call_sid = await components.messaging.make_outbound_call(payload.to_number, twiml)
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=exc.detail) from exc

    return OutboundCallResponse(call_sid=call_sid, to_number=payload.to_number)


@router.websocket("/conversation-relay")
async def conversation_relay(
    websocket: WebSocket,
    components: RelayComponents = Depends(get_components),
) -> None:
    await websocket.accept()
    gateway = SessionGateway(
        websocket,
        components.settings,
        llm_factory=components.llm_factory,
        customer_loader=components.customer_loader,
        tool_registry=components.tool_registry,
        messaging=components.messaging,
    )
    await gateway.run()
