"""Map raw HTTP failures onto the ErrorKind taxonomy.

classify_response() is pure and never raises: an unparseable body still yields
a JumpCloudAPIError with the raw text as its message.
"""
from __future__ import annotations
import json
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional, Tuple

from .exceptions import ErrorKind, HTTPStatusError, JumpCloudAPIError

# Error codes used when the body does not carry one
ERROR_AUTH_FAILED = "AUTH_FAILED"
ERROR_PERMISSION_DENIED = "PERMISSION_DENIED"
ERROR_NOT_FOUND = "NOT_FOUND"
ERROR_ALREADY_EXISTS = "ALREADY_EXISTS"
ERROR_INVALID_INPUT = "INVALID_INPUT"
ERROR_RATE_LIMITED = "RATE_LIMITED"
ERROR_INTERNAL = "INTERNAL"
ERROR_UNAVAILABLE = "UNAVAILABLE"
ERROR_DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
ERROR_UNKNOWN = "UNKNOWN"

_STATUS_CODES = {
    400: ERROR_INVALID_INPUT,
    401: ERROR_AUTH_FAILED,
    403: ERROR_PERMISSION_DENIED,
    404: ERROR_NOT_FOUND,
    409: ERROR_ALREADY_EXISTS,
    422: ERROR_INVALID_INPUT,
    429: ERROR_RATE_LIMITED,
    500: ERROR_INTERNAL,
    503: ERROR_UNAVAILABLE,
    504: ERROR_DEADLINE_EXCEEDED,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Return the ErrorKind for an HTTP status code."""
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.FATAL
    if status_code == 408 or 500 <= status_code < 600:
        return ErrorKind.TRANSIENT
    if 400 <= status_code < 500:
        # Remaining client errors will not succeed on retry either
        return ErrorKind.VALIDATION
    return ErrorKind.FATAL


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Returns None when the header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _extract_message(status_code: int, body: bytes) -> Tuple[str, Optional[str]]:
    """Return (message, remote code) from an error body."""
    if not body:
        return f"Unknown error with status code {status_code}", None

    text = body.decode("utf-8", errors="replace")
    try:
        payload: Any = json.loads(text)
    except ValueError:
        return text, None

    if not isinstance(payload, dict):
        return text, None

    code = payload.get("code") if isinstance(payload.get("code"), str) else None
    message = payload.get("message")
    if isinstance(message, str) and message:
        return message, code

    # Handle both {"error": "message"} and {"error": {"message": "..."}}
    error_field = payload.get("error")
    if isinstance(error_field, str) and error_field:
        return error_field, code
    if isinstance(error_field, dict) and isinstance(error_field.get("message"), str):
        return error_field["message"], code or error_field.get("code")

    return text, code


def classify_response(
    status_code: int,
    body: bytes,
    headers: Optional[Mapping[str, str]] = None,
    endpoint: str = "",
) -> JumpCloudAPIError:
    """Build a classified error from a failed response.

    Args:
        status_code: HTTP status code
        body: Raw response body
        headers: Response headers (Retry-After is honored for 429)
        endpoint: URL or path for the error message

    Returns:
        JumpCloudAPIError with kind, code and message populated
    """
    kind = kind_for_status(status_code)
    try:
        message, code = _extract_message(status_code, body)
    except Exception:  # classification must never raise
        message, code = repr(body), None

    retry_after = None
    if kind is ErrorKind.RATE_LIMITED and headers:
        retry_after = parse_retry_after(headers.get("Retry-After"))

    return JumpCloudAPIError(
        kind,
        status_code,
        message,
        code=code or _STATUS_CODES.get(status_code, ERROR_UNKNOWN),
        body=body,
        endpoint=endpoint,
        retry_after=retry_after,
    )


def classify(error: HTTPStatusError) -> JumpCloudAPIError:
    """Classify a raw transport HTTPStatusError."""
    return classify_response(error.status_code, error.body, error.headers, error.endpoint)
