"""Gemini provider implementation.

Two call paths share one contract. ``stream_simple`` sends only the
conversation and reads ``chunk.text``. ``stream`` adds generation settings and
function declarations, and reads candidate parts, including native function
calls. Both paths scan text for fenced function calls.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from tandem.errors import APIError
from tandem.models import FunctionCallDetected, NormalizedEvent, ProviderKind
from tandem.providers._errors import wrap_provider_error
from tandem.providers.models import (
    FunctionCallPart,
    FunctionResultPart,
    ProviderRequest,
    TextPart,
    Turn,
)
from tandem.streaming import FencedCallDetector

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_KIND = ProviderKind.ALTERNATE

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 2048


class GeminiProvider:
    """Google Gemini API provider."""

    def __init__(
        self,
        api_key: str,
        *,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> None:
        """Create provider with an API key and generation defaults."""
        self.api_key = api_key
        self.default_temperature = default_temperature
        self.default_max_output_tokens = default_max_output_tokens
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def stream_simple(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        """Plain-text path: no tools, no generation settings."""
        from google.genai import types

        config = types.GenerateContentConfig(response_mime_type="text/plain")
        detector = FencedCallDetector()
        async for chunk in self._generate(request, config, stream=stream):
            for event in detector.feed(_chunk_text(chunk)):
                yield event
        for event in detector.finish():
            yield event

    async def stream(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        """Full path: generation settings, tools and native function calls."""
        config = self._rich_config(request)
        detector = FencedCallDetector()
        emitted: set[tuple[str, str]] = set()
        async for chunk in self._generate(request, config, stream=stream):
            for text, call in _chunk_parts(chunk):
                if call is None:
                    for event in detector.feed(text):
                        if isinstance(event, FunctionCallDetected):
                            emitted.add(_call_key(event))
                        yield event
                    continue
                key = _call_key(call)
                if key in emitted:
                    continue
                emitted.add(key)
                detector.mark_detected(call)
                yield call
        for event in detector.finish():
            yield event

    async def _generate(
        self, request: ProviderRequest, config: Any, *, stream: bool
    ) -> AsyncIterator[Any]:
        """Yield raw response chunks; a non-streaming response is one chunk."""
        client = self._get_client()
        contents = to_contents(request.turns)
        phase = "generate"
        try:
            if not stream:
                response = await client.aio.models.generate_content(
                    model=request.model, contents=contents, config=config
                )
                if not response:
                    raise APIError("Gemini returned an empty response.")
                yield response
                return
            chunks = await client.aio.models.generate_content_stream(
                model=request.model, contents=contents, config=config
            )
            phase = "stream"
            async for chunk in chunks:
                yield chunk
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, kind=_KIND, phase=phase) from e

    def _rich_config(self, request: ProviderRequest) -> Any:
        from google.genai import types

        temperature = request.temperature
        if temperature is None:
            temperature = self.default_temperature
        max_output_tokens = request.max_output_tokens
        if max_output_tokens is None:
            max_output_tokens = self.default_max_output_tokens

        config_kwargs: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if request.functions:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=f.name,
                            description=f.description,
                            parameters=f.parameters,
                        )
                        for f in request.functions
                    ]
                )
            ]
        return types.GenerateContentConfig(**config_kwargs)

    async def list_models(self) -> list[str]:
        """List model ids, without the ``models/`` resource prefix."""
        client = self._get_client()
        models: list[str] = []
        try:
            async for model in await client.aio.models.list():
                name = getattr(model, "name", None)
                if isinstance(name, str):
                    models.append(name.removeprefix("models/"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, kind=_KIND, phase="list_models") from e
        return models

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(client.aio, "aclose", None)
        if callable(aclose):
            await aclose()


def to_contents(turns: tuple[Turn, ...]) -> list[Any]:
    """Convert native turns into google-genai ``Content`` objects."""
    from google.genai import types

    contents: list[Any] = []
    for turn in turns:
        parts: list[Any] = []
        for part in turn.parts:
            if isinstance(part, TextPart):
                parts.append(types.Part.from_text(text=part.text))
            elif isinstance(part, FunctionCallPart):
                parts.append(
                    types.Part.from_function_call(name=part.name, args=part.arguments)
                )
            elif isinstance(part, FunctionResultPart):
                parts.append(
                    types.Part.from_function_response(
                        name=part.name, response=part.response
                    )
                )
        contents.append(types.Content(role=turn.role, parts=parts))
    return contents


def _chunk_text(chunk: Any) -> str:
    """Text of a chunk via the SDK's ``.text`` accessor; empty when absent."""
    try:
        text = getattr(chunk, "text", None)
    except ValueError:
        # .text raises on some non-text candidates
        return ""
    return text if isinstance(text, str) else ""


def _chunk_parts(chunk: Any) -> list[tuple[str, FunctionCallDetected | None]]:
    """Split a chunk's first candidate into text and function-call entries."""
    candidates = getattr(chunk, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []
    out: list[tuple[str, FunctionCallDetected | None]] = []
    for part in parts:
        if getattr(part, "thought", False):
            continue
        function_call = getattr(part, "function_call", None)
        if function_call is not None and getattr(function_call, "name", None):
            out.append(
                (
                    "",
                    FunctionCallDetected(
                        name=str(function_call.name),
                        arguments=json.dumps(function_call.args or {}),
                    ),
                )
            )
            continue
        text = getattr(part, "text", None)
        if isinstance(text, str) and text:
            out.append((text, None))
    return out


def _call_key(call: FunctionCallDetected) -> tuple[str, str]:
    """Identity of a call, insensitive to argument key order and spacing."""
    try:
        arguments = json.dumps(json.loads(call.arguments), sort_keys=True)
    except json.JSONDecodeError:
        arguments = call.arguments
    return call.name, arguments
