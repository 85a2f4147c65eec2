"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

if TYPE_CHECKING:
    from tandem.models import FunctionSpec


@dataclass(frozen=True)
class TextPart:
    """Literal text inside a turn."""

    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    """A structured function call with decoded arguments."""

    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class FunctionResultPart:
    """A structured function result."""

    name: str
    response: dict[str, Any]


Part: TypeAlias = TextPart | FunctionCallPart | FunctionResultPart


@dataclass(frozen=True)
class Turn:
    """One native conversation turn: a provider role plus its parts."""

    role: str
    parts: tuple[Part, ...]

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass(frozen=True)
class ProviderRequest:
    """A translated request, built fresh for a single call.

    Generation parameters stay ``None`` when the caller did not set them;
    providers apply their own defaults.
    """

    model: str
    turns: tuple[Turn, ...]
    functions: tuple[FunctionSpec, ...] | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None

    @property
    def prompt(self) -> str:
        """Text of the final (current prompt) turn."""
        return self.turns[-1].text if self.turns else ""
