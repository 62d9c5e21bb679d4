"""Structured error taxonomy for data store access.

Provides a canonical set of error codes that callers can switch on, so that
controllers, the subscription manager, and any outer surface agree on what
went wrong without parsing message strings.

Usage::

    from casinohub.errors import TransportError, error_payload

    try:
        await store.select("casinos", query)
    except TransportError as exc:
        body = error_payload(exc)
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Canonical error codes for data store failures.

    Callers should switch on ``exc.code`` (not the exception message) to
    decide whether a failure is worth retrying.
    """

    TRANSPORT = "transport_error"
    VALIDATION = "validation_error"
    CONSTRAINT_VIOLATION = "constraint_violation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    RETRY_EXHAUSTED = "retry_exhausted"
    INTERNAL = "internal_error"


class DataStoreError(Exception):
    """Base class for every failure surfaced by a ``DataStore``."""

    code: ErrorCode = ErrorCode.INTERNAL

    @property
    def retryable(self) -> bool:
        return self.code is ErrorCode.TRANSPORT


class TransportError(DataStoreError):
    """Network unreachable, timeout, or an unexpected 5xx from the backend."""

    code = ErrorCode.TRANSPORT


class QueryValidationError(DataStoreError):
    """Malformed filter, unknown column, or a record missing required fields."""

    code = ErrorCode.VALIDATION


class ConstraintViolationError(DataStoreError):
    """Unique/foreign-key/check constraint rejected a mutation."""

    code = ErrorCode.CONSTRAINT_VIOLATION


class RecordNotFoundError(DataStoreError):
    """The targeted record id does not exist."""

    code = ErrorCode.NOT_FOUND


class AuthorizationError(DataStoreError):
    """The backend rejected the credentials (401/403)."""

    code = ErrorCode.UNAUTHORIZED


class RetryExhaustedError(DataStoreError):
    """A subscription gave up after its maximum reconnect attempts."""

    code = ErrorCode.RETRY_EXHAUSTED


def error_payload(exc: Exception) -> dict:
    """Build a structured error body for an exception.

    Args:
        exc: Any exception; non-``DataStoreError`` values map to ``internal_error``.

    Returns:
        Dict with ``error`` object containing ``code`` and ``message``.
    """
    code = exc.code if isinstance(exc, DataStoreError) else ErrorCode.INTERNAL
    return {"error": {"code": code.value, "message": str(exc) or code.value}}
