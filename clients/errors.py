"""
Error taxonomy for calls to remote services.

Two kinds of remote failure exist and callers must be able to tell them apart:

    TransientError  → the remote was unreachable, overloaded or throttled.
                      Waiting may help; RetryPolicy retries these.
    anything else   → the remote understood the request and said no
                      (bad format, unknown id, field validation).
                      Never retried; surfaced to the caller immediately.
"""

from typing import Any, Optional

# HTTP statuses that mean "try again later" rather than "you sent something wrong"
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class ClientError(Exception):
    """Base class for every failure talking to a remote service."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class TransientError(ClientError):
    """Retryable remote failure (network error, 5xx, 408, 429, throttling)."""


# ── External AI job API ─────────────────────────────────────────


class JobApiError(ClientError):
    """The job API rejected the request."""


class JobApiUnavailable(JobApiError, TransientError):
    """The job API could not be reached or answered with a retryable status."""


class JobApiRejected(JobApiError):
    """The job API answered with a non-retryable error (4xx, success=false)."""


# ── Destination catalog API ─────────────────────────────────────


class CatalogError(ClientError):
    """The catalog API rejected the request."""


class CatalogUnavailable(CatalogError, TransientError):
    """The catalog API could not be reached, or throttled us."""


class CatalogUserError(CatalogError):
    """The catalog returned field-level validation errors (userErrors)."""

    def __init__(self, operation: str, user_errors: list[dict]):
        first = (
            user_errors[0].get("message", "unknown error")
            if user_errors and isinstance(user_errors[0], dict)
            else "unknown error"
        )
        super().__init__(f"{operation} rejected: {first}", details=user_errors)
        self.operation = operation
        self.user_errors = user_errors


class TransferError(TransientError):
    """The staged upload target answered the byte transfer with a non-2xx status."""
