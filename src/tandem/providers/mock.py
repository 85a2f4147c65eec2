"""Mock provider for testing."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from tandem.models import NormalizedEvent, TextIncrement

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tandem.providers.models import ProviderRequest

_WORD_RE = re.compile(r"\S+\s*")


class MockProvider:
    """Mock provider for offline use; echoes the prompt word by word."""

    async def stream(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        """Yield ``echo: <prompt>``, one word per increment when streaming."""
        text = f"echo: {request.prompt[:100]}"
        if not stream:
            yield TextIncrement(text)
            return
        for word in _WORD_RE.findall(text):
            yield TextIncrement(word)

    async def list_models(self) -> list[str]:
        """Return no models; callers fall back to static lists."""
        return []

    async def aclose(self) -> None:
        """Nothing to release."""
