"""Backends a completion can be routed to, plus an offline mock."""

from tandem.providers.base import Provider
from tandem.providers.gemini import GeminiProvider
from tandem.providers.mock import MockProvider
from tandem.providers.openai import OpenAIProvider

__all__ = ["GeminiProvider", "MockProvider", "OpenAIProvider", "Provider"]
