"""Provider-agnostic conversation and event types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, TypeAlias

Role = Literal["user", "assistant", "system"]


class ProviderKind(Enum):
    """Which backend serves a model. Dispatch on this is always exhaustive."""

    PRIMARY = "openai"
    ALTERNATE = "gemini"

    @property
    def label(self) -> str:
        """Human-readable provider name for messages."""
        return "OpenAI" if self is ProviderKind.PRIMARY else "Gemini"


@dataclass(frozen=True)
class FunctionCall:
    """A function call previously made by the assistant.

    ``arguments`` is the JSON-encoded argument object, as the model produced it.
    """

    name: str
    arguments: str


@dataclass(frozen=True)
class ConversationMessage:
    """One chronological turn of a chat history.

    ``function_call`` is only read on assistant messages; ``function_result``
    and ``function_name`` are only read on user messages.
    """

    role: Role
    content: str = ""
    function_call: FunctionCall | None = None
    function_result: Any = None
    function_name: str | None = None


@dataclass(frozen=True)
class FunctionSpec:
    """A function the model may call."""

    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionSpec:
        """Build from a ``{name, description, parameters}`` mapping."""
        parameters = data.get("parameters", data.get("parametersSchema"))
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            parameters=parameters if isinstance(parameters, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-schema function declaration shape."""
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.parameters is not None:
            out["parameters"] = self.parameters
        return out


@dataclass(frozen=True)
class TextIncrement:
    """A piece of streamed text, relayed in arrival order."""

    text: str


@dataclass(frozen=True)
class FunctionCallDetected:
    """A complete function call found in a streamed response."""

    name: str
    arguments: str


NormalizedEvent: TypeAlias = TextIncrement | FunctionCallDetected
