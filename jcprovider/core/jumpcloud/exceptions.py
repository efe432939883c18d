"""JumpCloud-specific exceptions for error handling."""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Classification of a failed API call.

    Drives both retry policy (dispatcher) and recovery policy
    (reconciliation protocol).
    """

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"
    TRANSPORT = "transport"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT, ErrorKind.TRANSPORT})


class JumpCloudError(Exception):
    """Base exception for all JumpCloud operations."""

    kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON output."""
        result: Dict[str, Any] = {"error": str(self)}
        if self.kind is not None:
            result["kind"] = self.kind.value
        return result


class HTTPStatusError(JumpCloudError):
    """Raw non-2xx response returned by the transport, before classification.

    Attributes:
        status_code: HTTP status code
        body: Raw response body
        headers: Response headers (case-insensitive mapping when from requests)
        endpoint: Full URL that failed
    """

    def __init__(self, status_code: int, body: bytes, headers: Optional[Dict[str, str]] = None, endpoint: str = ""):
        self.status_code = status_code
        self.body = body or b""
        self.headers = headers if headers is not None else {}
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}")


class JumpCloudAPIError(JumpCloudError):
    """Classified HTTP error from the JumpCloud API.

    Attributes:
        kind: ErrorKind driving retry and recovery decisions
        status_code: HTTP status code
        code: Remote error code (e.g. NOT_FOUND) or one derived from the status
        message: Error message from response, verbatim when not JSON
        body: Raw response body
        endpoint: API endpoint that failed
        retry_after: Seconds requested by a Retry-After header, if any
        attempts: Number of attempts made before giving up
    """

    def __init__(
        self,
        kind: ErrorKind,
        status_code: int,
        message: str,
        *,
        code: str = "UNKNOWN",
        body: bytes = b"",
        endpoint: str = "",
        retry_after: Optional[float] = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.code = code
        self.message = message
        self.body = body
        self.endpoint = endpoint
        self.retry_after = retry_after
        self.attempts = 1
        super().__init__(message)

    def __str__(self) -> str:
        text = f"[{self.code} - {self.status_code}] {self.message}"
        if self.endpoint:
            text = f"{text} ({self.endpoint})"
        if self.attempts > 1:
            text = f"{text} after {self.attempts} attempts"
        return text

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"status": self.status_code, "code": self.code, "message": self.message})
        if self.attempts > 1:
            result["attempts"] = self.attempts
        return result


class JumpCloudTransportError(JumpCloudError):
    """Network-level failure (timeout, connection refused, DNS)."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, endpoint: str = ""):
        self.message = message
        self.endpoint = endpoint
        self.attempts = 1
        super().__init__(message)

    def __str__(self) -> str:
        text = f"Connection error: {self.message}"
        if self.endpoint:
            text = f"{text} ({self.endpoint})"
        if self.attempts > 1:
            text = f"{text} after {self.attempts} attempts"
        return text


class RequestCancelledError(JumpCloudError):
    """The caller's cancel signal or deadline fired before the call completed."""


class ResourceCreatedWithoutIDError(JumpCloudError):
    """Create succeeded but the response carried no identity."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"POST {path} returned a resource without an ID")


class ImmutableFieldError(JumpCloudError):
    """Attempted change to a field that is fixed at creation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field_name: str, old: Any, new: Any):
        self.field_name = field_name
        self.old = old
        self.new = new
        super().__init__(
            f"Field '{field_name}' cannot be changed after creation "
            f"(current: {old!r}, desired: {new!r}); recreate the resource instead"
        )


class ReconciliationError(JumpCloudError):
    """A Create/Read/Update/Delete step failed.

    Attributes:
        operation: create, read, update or delete
        path: API path the step called
        cause: Underlying JumpCloudError
        resource_id: Identity already assigned remotely, when a create got
            that far before failing
    """

    def __init__(self, operation: str, path: str, cause: JumpCloudError, resource_id: str = ""):
        self.operation = operation
        self.path = path
        self.cause = cause
        self.resource_id = resource_id
        self.kind = getattr(cause, "kind", None)
        super().__init__(f"{operation} {path} failed: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.resource_id:
            result["id"] = self.resource_id
        return result


def _unwrap(err: BaseException) -> BaseException:
    return err.cause if isinstance(err, ReconciliationError) else err


def is_not_found(err: BaseException) -> bool:
    """Return True when the error is classified as NotFound."""
    return getattr(_unwrap(err), "kind", None) is ErrorKind.NOT_FOUND


def is_conflict(err: BaseException) -> bool:
    """Return True when the error is classified as Conflict."""
    return getattr(_unwrap(err), "kind", None) is ErrorKind.CONFLICT
