"""Request translation: conversation history → provider-native turns.

Both builders are pure. They never apply generation defaults; ``None`` flows
through to the provider layer unchanged.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from tandem.errors import InternalError, MalformedInputError
from tandem.models import FunctionSpec, ProviderKind
from tandem.providers.models import (
    FunctionCallPart,
    FunctionResultPart,
    Part,
    ProviderRequest,
    TextPart,
    Turn,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from tandem.models import ConversationMessage

UNKNOWN_FUNCTION = "unknown_function"


def build_request(
    kind: ProviderKind,
    *,
    model: str,
    history: Sequence[ConversationMessage],
    prompt: str,
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> ProviderRequest:
    """Build the native request for whichever provider *kind* names."""
    if kind is ProviderKind.PRIMARY:
        builder = build_primary_request
    elif kind is ProviderKind.ALTERNATE:
        builder = build_alternate_request
    else:
        raise InternalError(f"No request builder for provider {kind!r}")
    return builder(
        model=model,
        history=history,
        prompt=prompt,
        functions=functions,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    )


def build_alternate_request(
    *,
    model: str,
    history: Sequence[ConversationMessage],
    prompt: str,
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> ProviderRequest:
    """Translate for Gemini: ``assistant`` → ``model``, system text folded.

    Gemini has no system role in this integration, so system messages are
    joined (in order, newline-separated) and prefixed onto the first user turn.
    """
    system_texts: list[str] = []
    turns: list[Turn] = []

    for message in history:
        if message.role == "system":
            if message.content:
                system_texts.append(message.content)
            continue
        if message.role == "assistant":
            turns.append(Turn(role="model", parts=_assistant_parts(message)))
        elif message.role == "user":
            turns.append(Turn(role="user", parts=_user_parts(message)))
        else:
            raise MalformedInputError(f"Unknown message role: {message.role!r}")

    turns.append(Turn(role="user", parts=(TextPart(prompt),)))

    if system_texts:
        turns = _fold_system_prefix(turns, "\n".join(system_texts))

    return ProviderRequest(
        model=model,
        turns=tuple(turns),
        functions=coerce_functions(functions),
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    )


def build_primary_request(
    *,
    model: str,
    history: Sequence[ConversationMessage],
    prompt: str,
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
) -> ProviderRequest:
    """Translate for OpenAI chat completions: roles pass through.

    Function results become ``function``-role turns, followed by the user's
    text (if any) as a separate user turn.
    """
    turns: list[Turn] = []

    for message in history:
        if message.role == "system":
            turns.append(Turn(role="system", parts=(TextPart(message.content),)))
        elif message.role == "assistant":
            turns.append(Turn(role="assistant", parts=_assistant_parts(message)))
        elif message.role == "user":
            if message.function_result is None:
                turns.append(Turn(role="user", parts=(TextPart(message.content),)))
                continue
            turns.append(
                Turn(
                    role="function",
                    parts=(
                        FunctionResultPart(
                            name=message.function_name or UNKNOWN_FUNCTION,
                            response=result_payload(message.function_result),
                        ),
                    ),
                )
            )
            if message.content:
                turns.append(Turn(role="user", parts=(TextPart(message.content),)))
        else:
            raise MalformedInputError(f"Unknown message role: {message.role!r}")

    turns.append(Turn(role="user", parts=(TextPart(prompt),)))

    return ProviderRequest(
        model=model,
        turns=tuple(turns),
        functions=coerce_functions(functions),
        temperature=temperature,
        max_output_tokens=max_output_tokens,
    )


def _assistant_parts(message: ConversationMessage) -> tuple[Part, ...]:
    call = message.function_call
    if call is None:
        return (TextPart(message.content),)
    parts: list[Part] = []
    if message.content:
        parts.append(TextPart(message.content))
    parts.append(
        FunctionCallPart(name=call.name, arguments=parse_call_arguments(call.arguments))
    )
    return tuple(parts)


def _user_parts(message: ConversationMessage) -> tuple[Part, ...]:
    if message.function_result is None:
        return (TextPart(message.content),)
    parts: list[Part] = []
    if message.content:
        parts.append(TextPart(message.content))
    parts.append(
        FunctionResultPart(
            name=message.function_name or UNKNOWN_FUNCTION,
            response=result_payload(message.function_result),
        )
    )
    return tuple(parts)


def _fold_system_prefix(turns: list[Turn], prefix: str) -> list[Turn]:
    """Prefix *prefix* onto the text of the first user turn."""
    for idx, turn in enumerate(turns):
        if turn.role != "user":
            continue
        parts = list(turn.parts)
        for pidx, part in enumerate(parts):
            if isinstance(part, TextPart):
                parts[pidx] = TextPart(f"{prefix}\n{part.text}")
                break
        else:
            parts.insert(0, TextPart(prefix))
        folded = list(turns)
        folded[idx] = Turn(role=turn.role, parts=tuple(parts))
        return folded
    # The prompt turn is always a user turn, so this is unreachable.
    raise InternalError("No user turn to carry system instructions")


def parse_call_arguments(arguments: str) -> dict[str, Any]:
    """Decode a prior call's JSON arguments; malformed input is fatal."""
    try:
        parsed = json.loads(arguments) if arguments.strip() else {}
    except (json.JSONDecodeError, AttributeError) as e:
        raise MalformedInputError(
            f"Function call arguments are not valid JSON: {arguments!r}",
            hint="Pass FunctionCall.arguments as a JSON-encoded object.",
        ) from e
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}


def result_payload(value: Any) -> dict[str, Any]:
    """Coerce a function result into an object; malformed text is kept raw."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {"result": value}
    if isinstance(value, dict):
        return value
    return {"result": value}


def encode_function_result(value: Any) -> str:
    """Serialize a function result for storage in a conversation."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def decode_function_result(text: str) -> Any:
    """Inverse of :func:`encode_function_result`, falling back to raw text."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def coerce_functions(
    functions: Iterable[FunctionSpec | Mapping[str, Any]] | None,
) -> tuple[FunctionSpec, ...] | None:
    """Normalize a function catalog; ``None`` stays ``None``."""
    if functions is None:
        return None
    return tuple(
        f if isinstance(f, FunctionSpec) else FunctionSpec.from_dict(dict(f))
        for f in functions
    )
