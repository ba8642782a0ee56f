"""Caller profile lookup used to personalize the opening of a call."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from config.settings import Settings

LOGGER = logging.getLogger(__name__)

_FIRST_NAME_KEYS = ("firstName", "firstname", "first_name")
_LAST_NAME_KEYS = ("lastName", "lastname", "last_name")


@dataclass(frozen=True)
class CustomerProfile:
    first_name: str
    last_name: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name


def _first_present(data: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class CustomerContextLoader:
    """HTTP client for the ``/tools/get-customer`` collaborator.

    Every failure mode returns None so the session can fall back to an
    anonymous greeting.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = settings.customer_lookup_base_url
        self._timeout = settings.customer_lookup_timeout_seconds
        self._transport = transport

    async def load(self, phone_number: str | None) -> CustomerProfile | None:
        if not self._base_url:
            LOGGER.debug("Customer lookup endpoint not configured; skipping lookup.")
            return None
        if not phone_number:
            LOGGER.warning("No caller number available; skipping customer lookup.")
            return None

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/tools/get-customer",
                    json={"from": phone_number},
                )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            LOGGER.warning("Customer lookup failed for %s: %s", phone_number, exc)
            return None
        except ValueError as exc:
            LOGGER.warning("Customer lookup returned malformed JSON for %s: %s", phone_number, exc)
            return None

        if not isinstance(data, dict):
            LOGGER.warning("Customer lookup returned unexpected payload for %s", phone_number)
            return None

        first_name = _first_present(data, _FIRST_NAME_KEYS)
        if not first_name:
            LOGGER.info("No customer profile found for %s", phone_number)
            return None

        profile = CustomerProfile(
            first_name=first_name,
            last_name=_first_present(data, _LAST_NAME_KEYS),
            attributes=data,
        )
        LOGGER.info("Resolved caller %s as %s", phone_number, profile.display_name)
        return profile
