"""Fenced function-call detection over streamed text."""

from __future__ import annotations

import json

import pytest

from tandem.models import FunctionCallDetected, TextIncrement
from tandem.streaming import (
    FencedCallDetector,
    extract_function_call,
    normalize_text_stream,
)
from tests.helpers import collect

pytestmark = pytest.mark.unit

_CALL_BLOCK = '```json\n{"name": "lookup", "arguments": {"q": "x"}}\n```'


def test_extract_reads_name_and_reserializes_object_arguments() -> None:
    call = extract_function_call(f"Let me check.\n{_CALL_BLOCK}\nDone.")

    assert call == FunctionCallDetected(name="lookup", arguments=json.dumps({"q": "x"}))


def test_extract_keeps_string_arguments_verbatim() -> None:
    text = '```\n{"name": "ping", "arguments": "{\\"host\\": \\"a\\"}"}\n```'

    call = extract_function_call(text)

    assert call == FunctionCallDetected(name="ping", arguments='{"host": "a"}')


@pytest.mark.parametrize(
    "text",
    [
        "no fences at all",
        '```json\n{"name": "lookup"}\n```',
        '```json\n{"arguments": {}}\n```',
        '```json\n{"name": "", "arguments": {}}\n```',
        "```json\n[1, 2, 3]\n```",
        '```json\n{"name": "lookup", "arguments": {"q": "x"}}',
    ],
    ids=["plain", "no-arguments", "no-name", "empty-name", "array", "unterminated"],
)
def test_extract_ignores_non_call_text(text: str) -> None:
    assert extract_function_call(text) is None


def test_extract_skips_malformed_block_and_finds_later_one() -> None:
    text = f"```json\n{{name: oops}}\n```\nretrying:\n{_CALL_BLOCK}"

    call = extract_function_call(text)

    assert call is not None
    assert call.name == "lookup"


def test_extract_unclosed_object_does_not_swallow_next_block() -> None:
    text = f"```\n{{ oops\n```\nNow the call:\n{_CALL_BLOCK}"

    call = extract_function_call(text)

    assert call is not None
    assert call.name == "lookup"


def test_detector_finds_call_after_unclosed_block_across_fragments() -> None:
    detector = FencedCallDetector()
    fragments = [
        "```\n{ oops\n",
        "```\nNow the call:\n```js",
        'on\n{"name": "lookup", "arguments": {}}\n`',
        "``",
    ]

    events = [event for fragment in fragments for event in detector.feed(fragment)]

    assert events[-1] == FunctionCallDetected(name="lookup", arguments="{}")
    assert detector.text == "".join(fragments)


def test_detector_finds_call_after_long_prose() -> None:
    detector = FencedCallDetector()
    for _ in range(500):
        assert detector.feed("lorem ipsum ") == [TextIncrement("lorem ipsum ")]

    events = detector.feed(_CALL_BLOCK)

    assert events == [FunctionCallDetected(name="lookup", arguments='{"q": "x"}')]


def test_detector_relays_text_until_call_completes() -> None:
    detector = FencedCallDetector()

    events = [
        *detector.feed("Sure. "),
        *detector.feed('```json\n{"name": "lookup", '),
        *detector.feed('"arguments": {"q": "x"}}\n```'),
    ]

    assert events == [
        TextIncrement("Sure. "),
        TextIncrement('```json\n{"name": "lookup", '),
        FunctionCallDetected(name="lookup", arguments='{"q": "x"}'),
    ]


def test_detector_emits_call_once_even_when_text_keeps_matching() -> None:
    """Accumulated text matches from increment 3 onward; one event total."""
    detector = FencedCallDetector()
    fragments = [
        "Sure. ",
        '```json\n{"name": "lookup", ',
        '"arguments": {"q": "x"}}\n```',
        " Anything else",
        f" {_CALL_BLOCK}",
    ]

    events = [event for fragment in fragments for event in detector.feed(fragment)]
    events += detector.finish()

    calls = [e for e in events if isinstance(e, FunctionCallDetected)]
    assert len(calls) == 1
    assert events.index(calls[0]) == 2
    assert detector.text == "".join(fragments)


def test_detector_ignores_empty_fragments() -> None:
    detector = FencedCallDetector()

    assert detector.feed("") == []
    assert detector.text == ""


def test_malformed_block_is_relayed_as_text() -> None:
    detector = FencedCallDetector()

    events = detector.feed("```json\n{name: oops}\n```")

    assert events == [TextIncrement("```json\n{name: oops}\n```")]
    assert detector.finish() == []
    assert detector.detected is None


def test_mark_detected_suppresses_text_scanning() -> None:
    detector = FencedCallDetector()
    native = FunctionCallDetected(name="native", arguments="{}")

    detector.mark_detected(native)

    assert detector.feed(_CALL_BLOCK) == []
    assert detector.finish() == []
    assert detector.detected is native


@pytest.mark.asyncio
async def test_normalize_text_stream_relays_and_detects() -> None:
    async def fragments():
        for fragment in ["Hello", " world\n", _CALL_BLOCK, " trailing"]:
            yield fragment

    events = await collect(normalize_text_stream(fragments()))

    assert events == [
        TextIncrement("Hello"),
        TextIncrement(" world\n"),
        FunctionCallDetected(name="lookup", arguments='{"q": "x"}'),
    ]
