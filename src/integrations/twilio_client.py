from __future__ import annotations

import asyncio
import logging
from xml.sax.saxutils import quoteattr

from agents.errors import ConfigurationError
from config.settings import Settings

LOGGER = logging.getLogger(__name__)


def build_twilio_client(settings: Settings):
    from twilio.rest import Client

    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ConfigurationError("Twilio credentials are not configured")
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def twiml_conversation_relay(
    *,
    relay_url: str,
    settings: Settings,
    parameters: dict[str, str] | None = None,
) -> str:
    """Render TwiML that connects a call to the relay WebSocket."""

    attributes = {
        "url": relay_url,
        "voice": settings.relay_voice,
        "language": settings.relay_language,
        "transcriptionProvider": settings.relay_transcription_provider,
        "dtmfDetection": str(settings.relay_dtmf_detection).lower(),
        "interruptByDtmf": str(settings.relay_interrupt_by_dtmf).lower(),
    }
    rendered = " ".join(f"{name}={quoteattr(value)}" for name, value in attributes.items())
    params = "".join(
        f"<Parameter name={quoteattr(name)} value={quoteattr(value)} />"
        for name, value in (parameters or {}).items()
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<ConversationRelay {rendered}>{params}</ConversationRelay>"
        "</Connect>"
        "</Response>"
    )


class TwilioMessaging:
    """Async facade over the (blocking) Twilio REST client.

    Calls run in a worker thread so a slow Twilio request never stalls the
    event loop that serves live calls.
    """

    def __init__(self, settings: Settings, *, client=None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = build_twilio_client(self._settings)
        return self._client

    def _require_from_number(self) -> str:
        if not self._settings.twilio_from_number:
            raise ConfigurationError("Twilio from-number is not configured")
        return self._settings.twilio_from_number

    def _require_verify_service(self) -> str:
        if not self._settings.twilio_verify_service_sid:
            raise ConfigurationError("Twilio Verify service SID is not configured")
        return self._settings.twilio_verify_service_sid

    async def send_sms(self, to: str, body: str) -> str:
        client = self._get_client()
        from_number = self._require_from_number()
        message = await asyncio.to_thread(
            client.messages.create, to=to, from_=from_number, body=body
        )
        LOGGER.info("Sent SMS %s to %s", message.sid, to)
        return str(message.sid)

    async def send_verification(self, to: str, channel: str = "sms") -> str:
        client = self._get_client()
        service_sid = self._require_verify_service()
        verification = await asyncio.to_thread(
            client.verify.v2.services(service_sid).verifications.create,
            to=to,
            channel=channel,
        )
        LOGGER.info("Started %s verification for %s", channel, to)
        return str(verification.sid)

    async def check_verification(self, to: str, code: str) -> str:
        client = self._get_client()
        service_sid = self._require_verify_service()
        check = await asyncio.to_thread(
            client.verify.v2.services(service_sid).verification_checks.create,
            to=to,
            code=code,
        )
        return str(check.status)

    async def make_outbound_call(self, to: str, twiml: str) -> str:
        client = self._get_client()
        from_number = self._require_from_number()
        call = await asyncio.to_thread(
            client.calls.create, to=to, from_=from_number, twiml=twiml, record=True
        )
        LOGGER.info("Placed outbound call %s from %s to %s", call.sid, from_number, to)
        return str(call.sid)
