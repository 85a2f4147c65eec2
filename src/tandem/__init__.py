"""tandem: one chat-completion call site for OpenAI and Gemini models.

Public API:
    - stream_completion(): Stream normalized events from the model's provider
    - complete(): Drained, non-incremental form of stream_completion()
    - is_model_supported(): Fail-open model-support check
    - CompletionRouter: Explicit routing context (config + model catalog)
    - Config: Configuration dataclass
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tandem.catalog import (
    ALTERNATE_MODELS,
    RECOMMENDED_MODELS,
    ModelCatalog,
    classify_provider,
)
from tandem.config import Config, credential_report
from tandem.errors import (
    APIError,
    ConfigurationError,
    InternalError,
    MalformedInputError,
    MissingCredentialError,
    TandemError,
)
from tandem.models import (
    ConversationMessage,
    FunctionCall,
    FunctionCallDetected,
    FunctionSpec,
    NormalizedEvent,
    ProviderKind,
    TextIncrement,
)
from tandem.router import CompletionResult, CompletionRouter, CompletionState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping, Sequence

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("tandem-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("tandem").addHandler(logging.NullHandler())

_default_router: CompletionRouter | None = None


def get_default_router() -> CompletionRouter:
    """Return the process-wide router used by the module-level helpers."""
    global _default_router
    if _default_router is None:
        _default_router = CompletionRouter()
    return _default_router


async def stream_completion(
    prompt: str,
    model: str,
    history: Sequence[ConversationMessage] = (),
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> AsyncIterator[NormalizedEvent]:
    """Stream a completion through the default router.

    Example:
        async for event in tandem.stream_completion("Hello", "gemini-2.0-flash"):
            if isinstance(event, tandem.TextIncrement):
                print(event.text, end="", flush=True)
    """
    async for event in get_default_router().stream_completion(
        prompt,
        model,
        history,
        functions=functions,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    ):
        yield event


async def complete(
    prompt: str,
    model: str,
    history: Sequence[ConversationMessage] = (),
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> CompletionResult:
    """Run a completion through the default router and collect the result."""
    return await get_default_router().complete(
        prompt,
        model,
        history,
        functions=functions,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    )


async def is_model_supported(model: str | None) -> bool:
    """Check a model against the default router's catalog."""
    return await get_default_router().is_model_supported(model)


__all__ = [
    "ALTERNATE_MODELS",
    "RECOMMENDED_MODELS",
    "APIError",
    "CompletionResult",
    "CompletionRouter",
    "CompletionState",
    "Config",
    "ConfigurationError",
    "ConversationMessage",
    "FunctionCall",
    "FunctionCallDetected",
    "FunctionSpec",
    "InternalError",
    "MalformedInputError",
    "MissingCredentialError",
    "ModelCatalog",
    "NormalizedEvent",
    "ProviderKind",
    "TandemError",
    "TextIncrement",
    "classify_provider",
    "complete",
    "credential_report",
    "get_default_router",
    "is_model_supported",
    "stream_completion",
]
