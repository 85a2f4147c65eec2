from __future__ import annotations

import asyncio

import httpx
import pytest

from tandem.errors import (
    APIError,
    ConfigurationError,
    MalformedInputError,
    MissingCredentialError,
    TandemError,
)
from tandem.models import ProviderKind
from tandem.providers._errors import (
    extract_retry_after_s,
    extract_status_code,
    wrap_provider_error,
)

pytestmark = pytest.mark.unit

_GEMINI = ProviderKind.ALTERNATE


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=429,
        retry_after_s=2.0,
        provider="gemini",
        phase="generate",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.provider == "gemini"
    assert err.phase == "generate"


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.retry_after_s is None
    assert err.provider is None
    assert err.phase is None


def test_subclass_hierarchy() -> None:
    missing = MissingCredentialError("no key", provider="gemini")

    assert isinstance(missing, ConfigurationError)
    assert isinstance(missing, TandemError)
    assert missing.sources == ()
    assert isinstance(APIError("rate limit", status_code=429), TandemError)
    assert isinstance(MalformedInputError("bad"), TandemError)


# =============================================================================
# Provider Error Mapping (Contract)
# =============================================================================


class _SdkError(Exception):
    def __init__(self, message: str, **attrs: object) -> None:
        super().__init__(message)
        for name, value in attrs.items():
            setattr(self, name, value)


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str]) -> None:
        self.status_code = status_code
        self.headers = headers


@pytest.mark.contract
def test_wrap_extracts_status_and_retry_after_from_response() -> None:
    sdk = _SdkError("rate limited", response=_Resp(429, {"Retry-After": "2"}))

    err = wrap_provider_error(sdk, kind=ProviderKind.PRIMARY, phase="generate")

    assert type(err) is APIError
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is True
    assert err.provider == "openai"
    assert err.phase == "generate"
    assert str(err) == "OpenAI generate failed (status=429): rate limited"


@pytest.mark.contract
def test_wrap_names_gemini_and_reads_code_attribute() -> None:
    """google-genai errors carry the HTTP status on ``.code``."""
    err = wrap_provider_error(
        _SdkError("backend unavailable", code=503), kind=_GEMINI, phase="stream"
    )

    assert type(err) is APIError
    assert err.status_code == 503
    assert err.retryable is True
    assert str(err).startswith("Gemini stream failed (status=503)")


@pytest.mark.contract
def test_wrap_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)

    wrapped = wrap_provider_error(base, kind=_GEMINI, phase="generate")

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.retryable is False
    assert wrapped.provider == "gemini"
    assert wrapped.phase == "generate"


@pytest.mark.contract
def test_wrap_marks_transport_errors_retryable() -> None:
    request = httpx.Request("POST", "https://example.invalid")
    try:
        try:
            raise httpx.ConnectError("connection refused", request=request)
        except httpx.ConnectError as e:
            raise RuntimeError("sdk call failed") from e
    except RuntimeError as e:
        err = wrap_provider_error(e, kind=ProviderKind.PRIMARY, phase="generate")

    assert err.status_code is None
    assert err.retryable is True
    assert str(err) == "OpenAI generate failed: sdk call failed"


@pytest.mark.contract
def test_wrap_non_transient_error_not_retryable() -> None:
    err = wrap_provider_error(
        _SdkError("invalid model", status_code=404),
        kind=ProviderKind.PRIMARY,
        phase="generate",
    )

    assert err.retryable is False
    assert err.hint is None


def test_wrap_reraises_cancelled_error() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(
            asyncio.CancelledError("cancelled"), kind=_GEMINI, phase="stream"
        )


@pytest.mark.parametrize(
    ("kind", "status", "message", "expected"),
    [
        (ProviderKind.PRIMARY, 401, "unauthorized", "OPENAI_API_KEY"),
        (ProviderKind.ALTERNATE, 403, "forbidden", "GOOGLE_API_KEY, GEMINI_API_KEY"),
        (
            ProviderKind.ALTERNATE,
            400,
            "API key not valid. Please pass a valid API key.",
            "google_api_key in config.toml",
        ),
    ],
    ids=["openai-401", "gemini-403", "gemini-400-api-key"],
)
def test_auth_failures_name_credential_sources(
    kind: ProviderKind, status: int, message: str, expected: str
) -> None:
    err = wrap_provider_error(
        _SdkError(message, status_code=status), kind=kind, phase="generate"
    )

    assert err.hint is not None
    assert err.hint.startswith(f"Check the {kind.label} key")
    assert expected in err.hint


def test_plain_400_gets_no_credential_hint() -> None:
    err = wrap_provider_error(
        _SdkError("invalid argument", status_code=400), kind=_GEMINI, phase="generate"
    )

    assert err.hint is None


@pytest.mark.parametrize(
    ("retry_delay", "expected"),
    [
        ("8.352104981s", 8.352104981),
        ("8s", 8.0),
    ],
)
def test_extract_retry_after_from_google_retry_info(
    retry_delay: str, expected: float
) -> None:
    details = {
        "error": {
            "details": [
                {
                    "@type": "type.googleapis.com/google.rpc.RetryInfo",
                    "retryDelay": retry_delay,
                }
            ]
        }
    }

    assert extract_retry_after_s(_SdkError("rate limited", details=details)) == expected


def test_extract_status_code_walks_cause_chain() -> None:
    try:
        try:
            raise _SdkError("inner", status_code=502)
        except _SdkError as e:
            raise ValueError("outer") from e
    except ValueError as e:
        assert extract_status_code(e) == 502


def test_extract_status_code_ignores_non_http_codes() -> None:
    assert extract_status_code(_SdkError("weird", code=7)) is None
