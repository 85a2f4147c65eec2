"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider classes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tandem.models import NormalizedEvent, ProviderKind

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tandem.providers.models import ProviderRequest

ScriptItem = NormalizedEvent | BaseException


@dataclass
class ScriptedProvider:
    """Provider double that replays a scripted sequence of events/exceptions.

    An exception in the script is raised when reached, so a script can fail
    before or after emitting events.
    """

    script: list[ScriptItem] = field(default_factory=list)
    models: list[str] | BaseException = field(default_factory=list)
    models_delay_s: float = 0.0
    calls: list[tuple[str, ProviderRequest, bool]] = field(default_factory=list)
    list_calls: int = 0
    closed: int = 0

    async def _replay(
        self,
        name: str,
        script: list[ScriptItem],
        request: ProviderRequest,
        stream: bool,
    ) -> AsyncIterator[NormalizedEvent]:
        self.calls.append((name, request, stream))
        for item in script:
            await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            yield item

    def stream(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        return self._replay("stream", self.script, request, stream)

    async def list_models(self) -> list[str]:
        self.list_calls += 1
        if self.models_delay_s:
            await asyncio.sleep(self.models_delay_s)
        if isinstance(self.models, BaseException):
            raise self.models
        return list(self.models)

    async def aclose(self) -> None:
        self.closed += 1


@dataclass
class ScriptedGeminiProvider(ScriptedProvider):
    """ScriptedProvider with the simplified Gemini path as a first strategy."""

    simple_script: list[ScriptItem] = field(default_factory=list)

    def stream_simple(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        return self._replay("stream_simple", self.simple_script, request, stream)


@dataclass
class RecordingFactory:
    """Provider factory that hands out fixed doubles and records keys."""

    providers: dict[ProviderKind, Any]
    keys: list[tuple[ProviderKind, str | None]] = field(default_factory=list)

    def __call__(self, kind: ProviderKind, api_key: str | None) -> Any:
        self.keys.append((kind, api_key))
        return self.providers[kind]


def factory_for(
    *, primary: Any = None, alternate: Any = None
) -> Callable[[ProviderKind, str | None], Any]:
    """Build a RecordingFactory from optional per-kind doubles."""
    providers: dict[ProviderKind, Any] = {}
    if primary is not None:
        providers[ProviderKind.PRIMARY] = primary
    if alternate is not None:
        providers[ProviderKind.ALTERNATE] = alternate
    return RecordingFactory(providers)


async def collect(events: AsyncIterator[NormalizedEvent]) -> list[NormalizedEvent]:
    """Drain an event stream into a list."""
    return [event async for event in events]
