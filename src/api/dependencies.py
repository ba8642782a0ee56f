"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from agents.session_gateway import LLMFactory
from agents.tools import ToolRegistry, build_default_registry
from config.settings import Settings, get_settings
from integrations.customer_context import CustomerContextLoader
from integrations.twilio_client import TwilioMessaging
from llm.factory import build_llm_client


@dataclass(frozen=True)
class RelayComponents:
    """Process-wide collaborators shared by every relay session."""

    settings: Settings
    llm_factory: LLMFactory
    customer_loader: CustomerContextLoader
    tool_registry: ToolRegistry
    messaging: TwilioMessaging


@lru_cache(maxsize=1)
def _components_factory() -> RelayComponents:
    settings = get_settings()
    return RelayComponents(
        settings=settings,
        llm_factory=build_llm_client,
        customer_loader=CustomerContextLoader(settings),
        tool_registry=build_default_registry(),
        messaging=TwilioMessaging(settings),
    )


def get_components() -> RelayComponents:
    return _components_factory()


def get_app_settings() -> Settings:
    return get_components().settings
