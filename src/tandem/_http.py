"""HTTP status constants shared by provider error mapping."""

from __future__ import annotations

# Transient statuses; surfaced as ``APIError.retryable`` metadata only.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})
