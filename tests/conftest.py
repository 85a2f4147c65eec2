"""Shared pytest setup for the tandem suite.

Every test runs with provider credentials scrubbed from the environment and a
private, empty config home, so key resolution only sees what the test sets.
Live API tests are collected but skipped unless ENABLE_API_TESTS is set.
"""

from __future__ import annotations

import logging
import os

import pytest

# Models used throughout the suite. The Gemini one must stay in the
# alternate-model allow-list; the OpenAI one in the recommended list.
GEMINI_MODEL = "gemini-1.5-pro"
OPENAI_MODEL = "o3"
UNLISTED_MODEL = "gpt-4.1-mini"

# Anything a .env file or the developer's shell could leak into resolution.
_SCRUBBED_PREFIXES = ("OPENAI_", "GOOGLE_", "GEMINI_", "TANDEM_")


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch, tmp_path):
    """Scrub provider variables and point TANDEM_CONFIG_HOME at tmp_path.

    Live tests (``api``) and ``allow_env_pollution`` tests keep the real
    environment, since they need real keys.
    """
    node = request.node
    if "api" in node.keywords or node.get_closest_marker("allow_env_pollution"):
        return
    for name in [n for n in os.environ if n.startswith(_SCRUBBED_PREFIXES)]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TANDEM_CONFIG_HOME", str(tmp_path / "tandem-home"))


@pytest.fixture(scope="session", autouse=True)
def quiet_sdk_transport_logs():
    """The SDKs' HTTP clients log every request at INFO."""
    for name in ("httpx", "httpcore", "openai", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


@pytest.fixture
def gemini_model() -> str:
    return GEMINI_MODEL


@pytest.fixture
def openai_model() -> str:
    return OPENAI_MODEL


def pytest_collection_modifyitems(config, items):
    if os.getenv("ENABLE_API_TESTS"):
        return
    skip_live = pytest.mark.skip(reason="set ENABLE_API_TESTS=1 to call real APIs")
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_live)


def _first_env(*names: str) -> str:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    pytest.skip(f"{' or '.join(names)} not set")


@pytest.fixture
def gemini_api_key() -> str:
    """Real Gemini key for live tests; skips when absent."""
    return _first_env("GOOGLE_API_KEY", "GEMINI_API_KEY")


@pytest.fixture
def openai_api_key() -> str:
    """Real OpenAI key for live tests; skips when absent."""
    return _first_env("OPENAI_API_KEY")
