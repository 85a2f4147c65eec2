"""Exception hierarchy for tandem.

Every error carries an optional ``hint``: one sentence telling the caller
what to change. Errors raised before a request is built (credentials, input)
are never attributed to a backend; ``APIError`` always is.
"""

from __future__ import annotations


class TandemError(Exception):
    """Base exception for all tandem errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(TandemError):
    """Configuration validation or resolution failed."""


class MissingCredentialError(ConfigurationError):
    """No API key could be resolved for the selected provider.

    ``sources`` lists every place that was searched, in precedence order.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        sources: tuple[str, ...] = (),
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.sources = sources


class MalformedInputError(TandemError):
    """Caller-supplied conversation data could not be encoded."""


class InternalError(TandemError):
    """Invariant violation inside tandem; always a bug."""


class APIError(TandemError):
    """A backend call failed.

    ``provider`` and ``phase`` say where (``"gemini"``, ``"stream"``). The
    status and retry fields are informational: tandem itself never retries.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        phase: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        retry_after_s: float | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.phase = phase
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after_s = retry_after_s

    def attribute(self, provider: str, phase: str) -> APIError:
        """Fill in a missing provider/phase; existing values win."""
        if self.provider is None:
            self.provider = provider
        if self.phase is None:
            self.phase = phase
        return self
