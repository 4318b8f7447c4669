"""Structured errors raised by the mutation safety engine."""

from enum import Enum
from typing import Any, Optional

from googleapiclient.errors import HttpError


class ErrorKind(str, Enum):
    """Machine-readable error kinds."""

    # Precondition
    VERSION_MISMATCH = "VERSION_MISMATCH"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"

    # Scope
    EFFECT_SCOPE_EXCEEDED = "EFFECT_SCOPE_EXCEEDED"
    EXPLICIT_RANGE_REQUIRED = "EXPLICIT_RANGE_REQUIRED"
    AMBIGUOUS_RANGE = "AMBIGUOUS_RANGE"

    # Transaction
    TRANSACTION_CONFLICT = "TRANSACTION_CONFLICT"
    TRANSACTION_EXPIRED = "TRANSACTION_EXPIRED"
    REPLAY_FAILED = "REPLAY_FAILED"

    # Snapshot
    SNAPSHOT_CREATE_FAILED = "SNAPSHOT_CREATE_FAILED"
    SNAPSHOT_RESTORE_FAILED = "SNAPSHOT_RESTORE_FAILED"
    SNAPSHOT_NOT_FOUND = "SNAPSHOT_NOT_FOUND"

    # Transport
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    UNAVAILABLE = "UNAVAILABLE"
    AUTH_FAILED = "AUTH_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


class RetryStrategy(str, Enum):
    """Suggested caller-side retry strategy."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"
    WAIT_FOR_RESET = "wait_for_reset"
    MANUAL = "manual"
    NONE = "none"


class EngineError(Exception):
    """Base class for every error surfaced by the engine."""

    kind: ErrorKind = ErrorKind.TRANSPORT_ERROR
    retryable: bool = False
    retry_strategy: RetryStrategy = RetryStrategy.NONE

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        """Serialize for callers that decide programmatically."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "retry_strategy": self.retry_strategy.value,
            "details": self.details,
        }


# Precondition-kind


class PreconditionError(EngineError):
    """Observed state does not match the caller's expectation."""

    def __init__(self, field: str, expected: Any, observed: Any, message: Optional[str] = None):
        self.field = field
        self.expected = expected
        self.observed = observed
        super().__init__(
            message or f"Expected {field}={expected!r}, observed {observed!r}",
            details={"field": field, "expected": expected, "observed": observed},
        )


class VersionMismatchError(PreconditionError):
    kind = ErrorKind.VERSION_MISMATCH


class PreconditionFailedError(PreconditionError):
    kind = ErrorKind.PRECONDITION_FAILED


# Scope-kind


class ScopeError(EngineError):
    """Request is larger or vaguer than the caller allowed."""


class EffectScopeExceededError(ScopeError):
    kind = ErrorKind.EFFECT_SCOPE_EXCEEDED

    def __init__(self, limit_name: str, predicted: int, limit: int):
        self.limit_name = limit_name
        self.predicted = predicted
        self.limit = limit
        super().__init__(
            f"Operation would affect {predicted} ({limit_name}), exceeding limit of {limit}. "
            "Narrow the range or raise the limit.",
            details={"limit_name": limit_name, "predicted": predicted, "limit": limit},
        )


class ExplicitRangeRequiredError(ScopeError):
    kind = ErrorKind.EXPLICIT_RANGE_REQUIRED


class AmbiguousRangeError(ScopeError):
    kind = ErrorKind.AMBIGUOUS_RANGE


# Transaction-kind


class TransactionError(EngineError):
    """Idempotency bookkeeping rejected the request."""

    def __init__(self, transaction_id: str, message: str):
        self.transaction_id = transaction_id
        super().__init__(message, details={"transaction_id": transaction_id})


class TransactionConflictError(TransactionError):
    kind = ErrorKind.TRANSACTION_CONFLICT


class TransactionExpiredError(TransactionError):
    kind = ErrorKind.TRANSACTION_EXPIRED


class ReplayFailedError(TransactionError):
    kind = ErrorKind.REPLAY_FAILED


# Snapshot-kind


class SnapshotError(EngineError):
    """Snapshot creation, lookup or restore failed."""


class SnapshotCreateError(SnapshotError):
    kind = ErrorKind.SNAPSHOT_CREATE_FAILED
    retryable = True
    retry_strategy = RetryStrategy.EXPONENTIAL_BACKOFF


class SnapshotRestoreError(SnapshotError):
    kind = ErrorKind.SNAPSHOT_RESTORE_FAILED


class SnapshotNotFoundError(SnapshotError):
    kind = ErrorKind.SNAPSHOT_NOT_FOUND


# Transport-kind


class TransportError(EngineError):
    """The remote document store failed; classified, never retried here."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSPORT_ERROR,
        retryable: bool = True,
        retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF,
        status: Optional[int] = None,
    ):
        super().__init__(message, details={"status": status}, kind=kind)
        self.retryable = retryable
        self.retry_strategy = retry_strategy
        self.status = status


def classify_http_error(error: HttpError, operation: str = "request") -> TransportError:
    """Map a Google API HttpError onto a transport error kind."""
    status = getattr(error.resp, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    text = str(error).lower()
    message = f"Failed to {operation}: {error}"

    if status == 429 or "rate limit" in text:
        return TransportError(
            message, ErrorKind.RATE_LIMITED, True, RetryStrategy.WAIT_FOR_RESET, status
        )
    if status == 403 and "quota" in text:
        return TransportError(
            message, ErrorKind.QUOTA_EXCEEDED, True, RetryStrategy.WAIT_FOR_RESET, status
        )
    if status == 401:
        return TransportError(message, ErrorKind.AUTH_FAILED, False, RetryStrategy.MANUAL, status)
    if status == 403:
        return TransportError(
            message, ErrorKind.PERMISSION_DENIED, False, RetryStrategy.MANUAL, status
        )
    if status == 404:
        return TransportError(message, ErrorKind.NOT_FOUND, False, RetryStrategy.NONE, status)
    if status is not None and status >= 500:
        return TransportError(
            message, ErrorKind.UNAVAILABLE, True, RetryStrategy.EXPONENTIAL_BACKOFF, status
        )
    return TransportError(
        message, ErrorKind.TRANSPORT_ERROR, True, RetryStrategy.EXPONENTIAL_BACKOFF, status
    )
