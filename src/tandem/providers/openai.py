"""OpenAI provider implementation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from typing import TYPE_CHECKING, Any

from tandem.errors import APIError
from tandem.models import (
    FunctionCallDetected,
    NormalizedEvent,
    ProviderKind,
    TextIncrement,
)
from tandem.providers._errors import wrap_provider_error
from tandem.providers.models import (
    FunctionCallPart,
    FunctionResultPart,
    ProviderRequest,
    Turn,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_KIND = ProviderKind.PRIMARY


class OpenAIProvider:
    """OpenAI Chat Completions provider."""

    def __init__(self, api_key: str) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def stream(
        self, request: ProviderRequest, *, stream: bool = True
    ) -> AsyncIterator[NormalizedEvent]:
        """Stream a chat completion as normalized events.

        Function-call deltas are relayed as readable text increments and the
        assembled call is emitted once, after the stream ends.
        """
        client = self._get_client()
        create_kwargs = build_create_kwargs(request, stream=stream)

        try:
            response = await client.chat.completions.create(**create_kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, kind=_KIND, phase="generate") from e

        calls = _CallAssembler()
        if not stream:
            for event in _response_events(response, calls):
                yield event
        else:
            try:
                async for chunk in response:
                    for event in _chunk_events(chunk, calls):
                        yield event
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(e, kind=_KIND, phase="stream") from e

        for call in calls.finish():
            yield call

    async def list_models(self) -> list[str]:
        """List model ids visible to this API key."""
        client = self._get_client()
        models: list[str] = []
        try:
            async for model in client.models.list():
                model_id = getattr(model, "id", None)
                if isinstance(model_id, str):
                    models.append(model_id)
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
        await client.close()


def build_create_kwargs(request: ProviderRequest, *, stream: bool) -> dict[str, Any]:
    """Build ``chat.completions.create`` keyword arguments."""
    create_kwargs: dict[str, Any] = {
        "model": request.model,
        "messages": [_to_message(turn) for turn in request.turns],
        "stream": stream,
    }
    if request.temperature is not None:
        create_kwargs["temperature"] = request.temperature
    if request.max_output_tokens is not None:
        create_kwargs["max_tokens"] = request.max_output_tokens
    if request.functions:
        create_kwargs["functions"] = [f.to_dict() for f in request.functions]
    return create_kwargs


def _to_message(turn: Turn) -> dict[str, Any]:
    """Convert a native turn into a Chat Completions message dict."""
    if turn.role == "function":
        result = next(p for p in turn.parts if isinstance(p, FunctionResultPart))
        return {
            "role": "function",
            "name": result.name,
            "content": json.dumps(result.response),
        }

    message: dict[str, Any] = {"role": turn.role, "content": turn.text}
    call = next((p for p in turn.parts if isinstance(p, FunctionCallPart)), None)
    if call is not None:
        message["content"] = turn.text or None
        message["function_call"] = {
            "name": call.name,
            "arguments": json.dumps(call.arguments),
        }
    return message


@dataclass
class _CallAssembler:
    """Collects function-call name and argument deltas for one response."""

    calls: list[list[str]] = field(default_factory=list)

    def start(self, name: str) -> None:
        self.calls.append([name, ""])

    def add_arguments(self, fragment: str) -> bool:
        """Append *fragment*; return True if it is the call's first fragment."""
        if not self.calls:
            self.start("")
        first = self.calls[-1][1] == ""
        self.calls[-1][1] += fragment
        return first

    def finish(self) -> list[FunctionCallDetected]:
        seen: set[tuple[str, str]] = set()
        out: list[FunctionCallDetected] = []
        for name, arguments in self.calls:
            key = (name, arguments)
            if not name or key in seen:
                continue
            seen.add(key)
            out.append(FunctionCallDetected(name=name, arguments=arguments or "{}"))
        return out


def _delta_events(delta: Any, calls: _CallAssembler) -> list[NormalizedEvent]:
    events: list[NormalizedEvent] = []
    content = getattr(delta, "content", None)
    if content:
        events.append(TextIncrement(content))

    function_call = getattr(delta, "function_call", None)
    if function_call is not None:
        name = getattr(function_call, "name", None)
        if name:
            calls.start(name)
            events.append(TextIncrement(f"[Function Call: {name}]"))
        arguments = getattr(function_call, "arguments", None)
        if arguments:
            first = calls.add_arguments(arguments)
            events.append(TextIncrement(f"\n{arguments}" if first else arguments))
    return events


def _chunk_events(chunk: Any, calls: _CallAssembler) -> list[NormalizedEvent]:
    """Normalize one ``ChatCompletionChunk``."""
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return []
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return []
    return _delta_events(delta, calls)


def _response_events(response: Any, calls: _CallAssembler) -> list[NormalizedEvent]:
    """Normalize a non-streaming ``ChatCompletion`` as a single unit."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        return []
    message = getattr(choices[0], "message", None)
    if message is None:
        return []
    return _delta_events(message, calls)
