"""Provider protocol: minimal interface for chat backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tandem.models import NormalizedEvent
    from tandem.providers.models import ProviderRequest


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: stream, list_models, aclose."""

    def stream(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        """Yield normalized events for *request*.

        With ``stream=False`` the provider makes one non-streaming call and
        normalizes the whole response as a single unit.
        """
        ...

    async def list_models(self) -> list[str]:
        """Return the model ids this provider's account can use."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...
