from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from config.settings import Settings  # noqa: E402
from fakes import make_settings  # noqa: E402


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def relay_components(settings):
    from agents.tools import build_default_registry
    from api.dependencies import RelayComponents
    from fakes import FakeCustomerLoader, FakeLLM, FakeMessaging

    llm = FakeLLM()
    return RelayComponents(
        settings=settings,
        llm_factory=lambda _settings: llm,
        customer_loader=FakeCustomerLoader(),
        tool_registry=build_default_registry(),
        messaging=FakeMessaging(),
    )


@pytest.fixture()
def client(app, relay_components):
    # Override relay collaborators so tests never reach Twilio or a model backend.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_components] = lambda: relay_components
    app.dependency_overrides[deps.get_app_settings] = lambda: relay_components.settings

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
