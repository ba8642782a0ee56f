from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from agents.errors import ConfigurationError
from fakes import make_settings
from integrations.twilio_client import TwilioMessaging, to_ws_url


class FakeResource:
    def __init__(self, result) -> None:
        self.result = result
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        return self.result


class FakeVerifyService:
    def __init__(self) -> None:
        self.verifications = FakeResource(SimpleNamespace(sid="VE1"))
        self.verification_checks = FakeResource(SimpleNamespace(status="approved"))


class FakeTwilioClient:
    def __init__(self) -> None:
        self.messages = FakeResource(SimpleNamespace(sid="SM1"))
        self.calls = FakeResource(SimpleNamespace(sid="CA9"))
        self.service = FakeVerifyService()
        self.service_sids: list[str] = []
        self.verify = SimpleNamespace(v2=SimpleNamespace(services=self._services))

    def _services(self, sid: str) -> FakeVerifyService:
        self.service_sids.append(sid)
        return self.service


def test_messaging_wraps_rest_client():
    client = FakeTwilioClient()
    messaging = TwilioMessaging(make_settings(twilio_verify_service_sid="VA1"), client=client)

    async def scenario():
        return (
            await messaging.send_sms("+61400000000", "hello"),
            await messaging.send_verification("+61400000000", "call"),
            await messaging.check_verification("+61400000000", "123456"),
            await messaging.make_outbound_call("+61400000000", "<Response/>"),
        )

    assert asyncio.run(scenario()) == ("SM1", "VE1", "approved", "CA9")
    assert client.messages.requests == [{"to": "+61400000000", "from_": "+61200000000", "body": "hello"}]
    assert client.service.verifications.requests == [{"to": "+61400000000", "channel": "call"}]
    assert client.service_sids == ["VA1", "VA1"]
    assert client.calls.requests[0]["twiml"] == "<Response/>"


def test_verification_requires_service_sid():
    messaging = TwilioMessaging(make_settings(twilio_verify_service_sid=None), client=FakeTwilioClient())

    with pytest.raises(ConfigurationError):
        asyncio.run(messaging.send_verification("+61400000000"))


def test_missing_credentials_raise_configuration_error():
    messaging = TwilioMessaging(make_settings(twilio_account_sid=None, twilio_auth_token=None))

    with pytest.raises(ConfigurationError):
        asyncio.run(messaging.send_sms("+61400000000", "hi"))


def test_to_ws_url():
    assert to_ws_url("https://relay.example.com/x") == "wss://relay.example.com/x"
    assert to_ws_url("http://localhost:3000") == "ws://localhost:3000"
