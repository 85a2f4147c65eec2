"""Completion routing: classify, resolve credentials, translate, stream.

Each provider exposes an ordered list of execution strategies. The router
primes them one at a time and relays the first that produces output. A
strategy may only be replaced before it has yielded anything; after that its
failures propagate, so callers never see duplicated output.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import time
from typing import TYPE_CHECKING, Any

from tandem.catalog import ModelCatalog, classify_provider
from tandem.config import Config
from tandem.errors import APIError, InternalError, MalformedInputError, TandemError
from tandem.models import (
    FunctionCallDetected,
    FunctionSpec,
    NormalizedEvent,
    ProviderKind,
    TextIncrement,
)
from tandem.providers._errors import wrap_provider_error
from tandem.translate import build_request

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence

    from tandem.models import ConversationMessage
    from tandem.providers.base import Provider
    from tandem.providers.models import ProviderRequest

logger = logging.getLogger(__name__)


class CompletionState(Enum):
    """Lifecycle of one routed completion."""

    IDLE = "idle"
    CLASSIFYING = "classifying"
    TRANSLATING = "translating"
    CALLING = "calling"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class CompletionTrace:
    """What happened during the most recent completion."""

    model: str
    provider: ProviderKind | None = None
    state: CompletionState = CompletionState.IDLE
    strategy: str | None = None
    attempts: list[tuple[str, str | None]] = field(default_factory=list)
    events: int = 0
    duration_s: float = 0.0

    def advance(self, state: CompletionState) -> None:
        logger.debug(
            "completion[%s]: %s -> %s", self.model, self.state.value, state.value
        )
        self.state = state


@dataclass(frozen=True)
class Strategy:
    """A named way of producing events for a translated request."""

    name: str
    run: Callable[..., AsyncIterator[NormalizedEvent]]


@dataclass
class StrategyOutcome:
    """Result of priming a strategy: a live stream, or the error it raised."""

    strategy: str
    events: AsyncIterator[NormalizedEvent] | None = None
    first: NormalizedEvent | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CompletionResult:
    """Drained form of a completion stream."""

    text: str
    function_call: FunctionCallDetected | None = None


async def attempt(
    strategy: Strategy, request: ProviderRequest, *, stream: bool = True
) -> StrategyOutcome:
    """Start *strategy* and wait for its first event.

    Failures become an error value instead of propagating.
    """
    events = strategy.run(request, stream=stream)
    try:
        first = await anext(events)
    except StopAsyncIteration:
        return StrategyOutcome(strategy.name)
    except asyncio.CancelledError:
        await _aclose(events)
        raise
    except Exception as e:
        await _aclose(events)
        return StrategyOutcome(strategy.name, error=e)
    return StrategyOutcome(strategy.name, events=events, first=first)


def strategies_for(kind: ProviderKind, provider: Provider) -> list[Strategy]:
    """Ordered execution strategies for a provider."""
    if kind is ProviderKind.PRIMARY:
        return [Strategy("openai.chat", provider.stream)]
    if kind is ProviderKind.ALTERNATE:
        ordered: list[Strategy] = []
        simple = getattr(provider, "stream_simple", None)
        if callable(simple):
            ordered.append(Strategy("gemini.simple", simple))
        ordered.append(Strategy("gemini.rich", provider.stream))
        return ordered
    raise InternalError(f"No strategies for provider {kind!r}")


def _get_provider(config: Config) -> Callable[[ProviderKind, str | None], Provider]:
    """Return a factory building the provider for a kind and resolved key."""

    def factory(kind: ProviderKind, api_key: str | None) -> Provider:
        if config.use_mock:
            from tandem.providers.mock import MockProvider

            return MockProvider()
        if api_key is None:
            raise InternalError(f"{kind.label} provider requested without a key")
        if kind is ProviderKind.PRIMARY:
            from tandem.providers.openai import OpenAIProvider

            return OpenAIProvider(api_key)
        if kind is ProviderKind.ALTERNATE:
            from tandem.providers.gemini import GeminiProvider

            return GeminiProvider(
                api_key,
                default_temperature=config.default_temperature,
                default_max_output_tokens=config.default_max_output_tokens,
            )
        raise InternalError(f"No provider for {kind!r}")

    return factory


class CompletionRouter:
    """Routes chat completions to OpenAI or Gemini based on the model name.

    One router is one application context: it owns the model catalog, so
    separate routers never share fetched state.

    Example:
        router = CompletionRouter(Config())
        async for event in router.stream_completion("Hi", "gemini-1.5-pro"):
            if isinstance(event, TextIncrement):
                print(event.text, end="")
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        provider_factory: Callable[[ProviderKind, str | None], Provider]
        | None = None,
    ) -> None:
        self.config = config or Config()
        self._provider_factory = provider_factory or _get_provider(self.config)
        self.catalog = ModelCatalog(
            self._list_primary_models, timeout_s=self.config.model_list_timeout_s
        )
        self.last_trace: CompletionTrace | None = None

    async def stream_completion(
        self,
        prompt: str,
        model: str,
        history: Sequence[ConversationMessage] = (),
        functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[NormalizedEvent]:
        """Stream normalized events for *prompt* from the model's provider.

        Raises:
            MissingCredentialError: No key for the selected provider.
            MalformedInputError: History could not be encoded.
            APIError: Every strategy for the provider failed.
        """
        trace = CompletionTrace(model=model)
        self.last_trace = trace
        start = time.perf_counter()

        try:
            if not isinstance(prompt, str):
                raise MalformedInputError(
                    f"prompt must be a string, got {type(prompt).__name__}"
                )
            trace.advance(CompletionState.CLASSIFYING)
            kind = classify_provider(model)
            trace.provider = kind
            api_key = None
            if not self.config.use_mock:
                api_key = self.config.resolve_api_key(kind)

            trace.advance(CompletionState.TRANSLATING)
            request = build_request(
                kind,
                model=model,
                history=history,
                prompt=prompt,
                functions=functions,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            )
            provider = self._provider_factory(kind, api_key)
        except Exception:
            trace.advance(CompletionState.FAILED)
            trace.duration_s = time.perf_counter() - start
            raise

        outcome: StrategyOutcome | None = None
        try:
            trace.advance(CompletionState.CALLING)
            for strategy in strategies_for(kind, provider):
                outcome = await attempt(strategy, request, stream=self.config.stream)
                trace.attempts.append(
                    (strategy.name, None if outcome.ok else str(outcome.error))
                )
                if outcome.ok:
                    break
                logger.warning(
                    "Strategy %s failed for model %s: %s",
                    strategy.name,
                    model,
                    outcome.error,
                )

            if outcome is None:
                raise InternalError(f"No strategies ran for {kind.label}")
            if outcome.error is not None:
                surfaced = _surface(kind, outcome.error)
                if surfaced is outcome.error:
                    raise surfaced
                raise surfaced from outcome.error

            trace.strategy = outcome.strategy
            trace.advance(CompletionState.STREAMING)
            if outcome.first is not None and outcome.events is not None:
                trace.events += 1
                yield outcome.first
                try:
                    async for event in outcome.events:
                        trace.events += 1
                        yield event
                except (asyncio.CancelledError, TandemError):
                    raise
                except Exception as e:
                    raise _surface(kind, e, "stream") from e
            trace.advance(CompletionState.COMPLETED)
        except GeneratorExit:
            raise
        except BaseException:
            trace.advance(CompletionState.FAILED)
            raise
        finally:
            if outcome is not None and outcome.events is not None:
                await _aclose(outcome.events)
            await _close_provider(provider)
            trace.duration_s = time.perf_counter() - start

    async def complete(
        self,
        prompt: str,
        model: str,
        history: Sequence[ConversationMessage] = (),
        functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> CompletionResult:
        """Drain :meth:`stream_completion` into text plus the detected call."""
        texts: list[str] = []
        call: FunctionCallDetected | None = None
        async for event in self.stream_completion(
            prompt,
            model,
            history,
            functions=functions,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        ):
            if isinstance(event, TextIncrement):
                texts.append(event.text)
            elif call is None:
                call = event
        return CompletionResult(text="".join(texts), function_call=call)

    async def is_model_supported(self, model: str | None) -> bool:
        """Fail-open support check; see :class:`ModelCatalog`."""
        return await self.catalog.is_model_supported(model)

    async def get_available_models(self) -> list[str]:
        """Return the memoized supported-model list."""
        return await self.catalog.get_available_models()

    def preload_models(self) -> None:
        """Start fetching the model list in the background."""
        self.catalog.preload()

    async def _list_primary_models(self) -> list[str] | None:
        """List OpenAI models, or ``None`` when no key is configured."""
        if self.config.use_mock:
            return None
        source, api_key = self.config.key_source(ProviderKind.PRIMARY)
        if api_key is None:
            logger.debug("No OpenAI key (%s); using static model list", source)
            return None
        provider = self._provider_factory(ProviderKind.PRIMARY, api_key)
        try:
            return await provider.list_models()
        finally:
            await _close_provider(provider)


def _surface(
    kind: ProviderKind, error: Exception, phase: str = "generate"
) -> TandemError:
    """Attribute a terminal failure to *kind*'s provider."""
    if isinstance(error, TandemError) and not isinstance(error, APIError):
        return error
    return wrap_provider_error(error, kind=kind, phase=phase)


async def _aclose(events: AsyncIterator[Any]) -> None:
    aclose = getattr(events, "aclose", None)
    if callable(aclose):
        try:
            await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Closing abandoned stream failed: %s", exc)


async def _close_provider(provider: Provider) -> None:
    aclose = getattr(provider, "aclose", None)
    if callable(aclose):
        try:
            await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Provider cleanup failed: %s", exc)
