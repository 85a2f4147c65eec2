"""Stream normalization shared by providers.

Gemini does not reliably stream structured tool calls on every path, so a
model may instead write the call as a fenced JSON block::

    ```json
    {"name": "lookup", "arguments": {"q": "x"}}
    ```

``extract_function_call`` recognizes that shape in accumulated text, and
``FencedCallDetector`` applies it incrementally with at-most-once emission.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from tandem.models import FunctionCallDetected, NormalizedEvent, TextIncrement

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

_FENCE = "```"
# The body may not cross a fence, so an unclosed ``{`` in one block can never
# swallow the block after it.
_FENCED_OBJECT_RE = re.compile(
    r"```(?:json)?\s*(\{(?:(?!```).)*?\})\s*```", re.DOTALL
)


def extract_function_call(text: str) -> FunctionCallDetected | None:
    """Return the first fenced ``{name, arguments}`` object in *text*.

    Blocks with malformed JSON are logged and skipped, never raised.
    """
    if _FENCE not in text:
        return None
    for match in _FENCED_OBJECT_RE.finditer(text):
        body = match.group(1)
        try:
            obj: Any = json.loads(body)
        except json.JSONDecodeError as e:
            logger.debug("Discarding fenced block with malformed JSON: %s", e)
            continue
        if not isinstance(obj, dict) or "name" not in obj or "arguments" not in obj:
            continue
        name = obj["name"]
        if not isinstance(name, str) or not name:
            continue
        arguments = obj["arguments"]
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return FunctionCallDetected(name=name, arguments=arguments)
    return None


class FencedCallDetector:
    """Per-response accumulator that turns text fragments into events.

    Text is relayed as it arrives until a fenced call is recognized in the
    accumulated text. That call is emitted once and all later text is
    swallowed.
    """

    def __init__(self) -> None:
        self._fragments: list[str] = []
        # Text from the last fence onward; only it can hold a call's opening.
        self._window = ""
        self.detected: FunctionCallDetected | None = None

    @property
    def text(self) -> str:
        """Everything fed so far."""
        return "".join(self._fragments)

    def feed(self, fragment: str) -> list[NormalizedEvent]:
        """Accumulate *fragment* and return the events it produces."""
        if not fragment:
            return []
        self._fragments.append(fragment)
        if self.detected is not None:
            return []
        self._window += fragment
        call = extract_function_call(self._window)
        if call is not None:
            self.detected = call
            return [call]
        last_fence = self._window.rfind(_FENCE)
        self._window = (
            self._window[last_fence:] if last_fence >= 0 else self._window[-2:]
        )
        return [TextIncrement(fragment)]

    def mark_detected(self, call: FunctionCallDetected) -> None:
        """Record a call found by other means so text scanning stops."""
        if self.detected is None:
            self.detected = call

    def finish(self) -> list[NormalizedEvent]:
        """Re-test the full response once after the stream ends."""
        if self.detected is not None:
            return []
        call = extract_function_call(self.text)
        if call is None:
            return []
        self.detected = call
        return [call]


async def normalize_text_stream(
    fragments: AsyncIterable[str],
) -> AsyncIterator[NormalizedEvent]:
    """Relay text fragments as events, detecting a fenced call along the way."""
    detector = FencedCallDetector()
    async for fragment in fragments:
        for event in detector.feed(fragment):
            yield event
    for event in detector.finish():
        yield event
