"""Model classification and the model-support catalog.

Classification is static and offline. Support checks consult a model list
fetched at most once per catalog, and fail open whenever that list is late or
unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from tandem.models import ProviderKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

RECOMMENDED_MODELS: tuple[str, ...] = ("o4-mini", "o3")

ALTERNATE_MODELS: tuple[str, ...] = (
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-1.5-pro-latest",
    "gemini-2.5-pro-preview-03-25",
    "gemini-pro",
    "gemini-2.0-flash",
)

DEFAULT_MODEL_LIST_TIMEOUT_S = 2.0


def _consume_exception(fut: asyncio.Future[list[str]]) -> None:
    """Avoid 'Future exception was never retrieved' for abandoned fetches."""
    if not fut.cancelled():
        fut.exception()


def classify_provider(model: str) -> ProviderKind:
    """Return ALTERNATE for allow-listed Gemini models, PRIMARY otherwise."""
    if model in ALTERNATE_MODELS:
        return ProviderKind.ALTERNATE
    return ProviderKind.PRIMARY


def static_models() -> list[str]:
    """Models known without any network access."""
    return [*RECOMMENDED_MODELS, *ALTERNATE_MODELS]


class ModelCatalog:
    """Process-lifetime cache of the supported-model list.

    The list is populated at most once, through a shared future: the first
    caller starts the fetch and every caller awaits the same result. It is
    never refreshed.

    Args:
        lister: Lists the primary provider's models. Returning ``None`` (or
            passing no lister) means no credential is available, so only the
            static lists are used.
        timeout_s: How long :meth:`is_model_supported` waits for the list.
    """

    def __init__(
        self,
        lister: Callable[[], Awaitable[list[str] | None]] | None = None,
        *,
        timeout_s: float = DEFAULT_MODEL_LIST_TIMEOUT_S,
    ) -> None:
        self._lister = lister
        self.timeout_s = timeout_s
        self._models: list[str] | None = None
        self._future: asyncio.Future[list[str]] | None = None
        self.fetch_count = 0

    async def _fetch(self) -> list[str]:
        self.fetch_count += 1
        if self._lister is None:
            models = static_models()
        else:
            try:
                listed = await self._lister()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Model list fetch failed, using static list: %s", e)
                models = static_models()
            else:
                if listed is None:
                    models = static_models()
                else:
                    models = sorted({*listed, *ALTERNATE_MODELS})
        self._models = models
        logger.debug("Model catalog populated with %d models", len(models))
        return models

    def _shared_future(self) -> asyncio.Future[list[str]]:
        loop = asyncio.get_running_loop()
        fut = self._future
        # A future from a loop that has since closed can never complete.
        if (
            fut is None
            or fut.cancelled()
            or (not fut.done() and fut.get_loop() is not loop)
        ):
            fut = loop.create_task(self._fetch())
            fut.add_done_callback(_consume_exception)
            self._future = fut
        return fut

    async def get_available_models(self) -> list[str]:
        """Return the supported-model list, fetching it on first use."""
        if self._models is not None:
            return list(self._models)
        return list(await self._shared_future())

    def preload(self) -> None:
        """Start the fetch in the background; must be called inside a loop."""
        if self._models is None:
            self._shared_future()

    async def is_model_supported(self, model: str | None) -> bool:
        """Advisory check that never blocks on a slow or failing fetch."""
        if model is None or not model.strip():
            return True
        if model in RECOMMENDED_MODELS or model in ALTERNATE_MODELS:
            return True

        if self._models is not None:
            models = self._models
        else:
            try:
                # shield: a timed-out wait abandons the fetch, it keeps running
                models = await asyncio.wait_for(
                    asyncio.shield(self._shared_future()), timeout=self.timeout_s
                )
            except TimeoutError:
                logger.debug(
                    "Model list not ready after %.1fs; allowing %s",
                    self.timeout_s,
                    model,
                )
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Model list unavailable (%s); allowing %s", e, model)
                return True

        if not models:
            return True
        return model.strip() in models
