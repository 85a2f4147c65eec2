"""Mapping of SDK failures onto tandem's ``APIError``.

Both SDKs raise their own exception types, and google-genai and openai place
the HTTP status and retry hints in different attributes. Everything leaving a
provider passes through :func:`wrap_provider_error`, so callers only ever see
an ``APIError`` that names the backend and the phase that failed.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
import re
from typing import TYPE_CHECKING, Any

import httpx

from tandem._http import RETRYABLE_STATUS_CODES
from tandem.config import credential_sources
from tandem.errors import APIError
from tandem.models import ProviderKind

if TYPE_CHECKING:
    from collections.abc import Iterator

_STATUS_ATTRS = ("status_code", "status", "code")

# "2" from a Retry-After header, "8.35s" from a google.rpc.RetryInfo duration.
_SECONDS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s?\s*$")


@dataclass(frozen=True)
class FailureFacts:
    """What an SDK exception chain says about the failed call."""

    status_code: int | None = None
    retry_after_s: float | None = None
    transport: bool = False

    @property
    def retryable(self) -> bool:
        return (
            self.transport
            or self.retry_after_s is not None
            or self.status_code in RETRYABLE_STATUS_CODES
        )


def _as_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def _as_seconds(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if value >= 0 else None
    if isinstance(value, str):
        m = _SECONDS_RE.match(value)
        if m:
            return float(m.group(1))
    return None


def iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc*, then its causes and contexts, each at most once."""
    seen: set[int] = set()
    pending: deque[BaseException] = deque([exc])
    while pending:
        current = pending.popleft()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.extend(
            link
            for link in (current.__cause__, current.__context__)
            if link is not None
        )


def _status_of(exc: BaseException) -> int | None:
    for attr in _STATUS_ATTRS:
        status = _as_status(getattr(exc, attr, None))
        if status is not None:
            return status
    return _as_status(getattr(getattr(exc, "response", None), "status_code", None))


def _retry_info_delays(exc: BaseException) -> list[Any]:
    """``retryDelay`` values from a google-genai error body.

    google-genai keeps the parsed JSON body on ``.details``::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details = getattr(exc, "details", None)
    error = details.get("error") if isinstance(details, dict) else None
    entries = error.get("details") if isinstance(error, dict) else None
    if not isinstance(entries, list):
        return []
    return [
        entry.get("retryDelay")
        for entry in entries
        if isinstance(entry, dict) and "RetryInfo" in str(entry.get("@type", ""))
    ]


def _retry_after_of(exc: BaseException) -> float | None:
    candidates: list[Any] = [getattr(exc, "retry_after", None)]
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if headers is not None and callable(getattr(headers, "get", None)):
        candidates.append(headers.get("Retry-After"))
    candidates.extend(_retry_info_delays(exc))
    for candidate in candidates:
        seconds = _as_seconds(candidate)
        if seconds is not None:
            return seconds
    return None


def inspect_failure(exc: BaseException) -> FailureFacts:
    """Collect status, retry delay and transport facts from *exc*'s chain.

    The outermost exception that carries a fact wins for that fact.
    """
    status_code: int | None = None
    retry_after_s: float | None = None
    transport = False
    for e in iter_exception_chain(exc):
        if status_code is None:
            status_code = _status_of(e)
        if retry_after_s is None:
            retry_after_s = _retry_after_of(e)
        transport = transport or isinstance(
            e, (httpx.TimeoutException, httpx.RequestError)
        )
    return FailureFacts(status_code, retry_after_s, transport)


def extract_status_code(exc: BaseException) -> int | None:
    """HTTP status found anywhere in *exc*'s chain."""
    return inspect_failure(exc).status_code


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Retry delay (seconds) found anywhere in *exc*'s chain."""
    return inspect_failure(exc).retry_after_s


def credential_hint(kind: ProviderKind, facts: FailureFacts, cause: str) -> str | None:
    """Point at the key sources when the backend rejected the credential.

    Gemini answers an invalid key with 400 rather than 401/403, so a 400 only
    counts when the message mentions the key.
    """
    lowered = cause.lower()
    rejected = facts.status_code in {401, 403} or (
        facts.status_code == 400 and ("api key" in lowered or "api_key" in lowered)
    )
    if not rejected:
        return None
    return f"Check the {kind.label} key: {', '.join(credential_sources(kind))}."


def wrap_provider_error(
    exc: BaseException,
    *,
    kind: ProviderKind,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Attribute *exc* to *kind*'s backend as an ``APIError``.

    An existing ``APIError`` keeps its own facts; only missing attribution is
    filled in. ``asyncio.CancelledError`` is re-raised, never wrapped.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        return exc.attribute(kind.value, phase)

    facts = inspect_failure(exc)
    cause = str(exc)
    summary = message or f"{kind.label} {phase} failed"
    if facts.status_code is not None:
        summary = f"{summary} (status={facts.status_code})"

    return APIError(
        f"{summary}: {cause}" if cause else summary,
        hint=credential_hint(kind, facts, cause),
        retryable=facts.retryable,
        status_code=facts.status_code,
        retry_after_s=facts.retry_after_s,
        provider=kind.value,
        phase=phase,
    )
