"""Request dispatcher for the JumpCloud API.

Handles authentication headers, org scoping, retry with backoff and error
classification. Every resource module goes through do_request().
"""
from __future__ import annotations
import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import urlencode

from jcprovider.config.settings import ProviderConfig

from .classifier import classify_response
from .exceptions import (
    HTTPStatusError,
    JumpCloudAPIError,
    JumpCloudTransportError,
    RequestCancelledError,
)
from .transport import Transport

logger = logging.getLogger(__name__)

Body = Union[None, bytes, str, Mapping[str, Any], Sequence[Any]]
QueryParams = Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]


class Requester(Protocol):
    """The one capability resource modules need from a client."""

    def do_request(self, method: str, path: str, body: Body = None) -> bytes:
        ...


@dataclass
class RetryState:
    """Per-call retry bookkeeping; never shared between calls."""
    key: str
    attempt: int = 0
    elapsed_backoff: float = 0.0


def _interruptible_wait(delay: float, cancel: Optional[threading.Event]) -> bool:
    """Sleep for delay seconds; return True if cancel fired first."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


class JumpCloudClient:
    """HTTP client for the JumpCloud API with centralized retry policy.

    Features:
    - x-api-key authentication and x-org-id scoping on every call
    - Bounded exponential backoff with jitter for rate-limited, 5xx and
      network failures
    - Immediate failure for not-found, conflict, validation and auth errors
    - Cooperative cancellation through a threading.Event or a deadline

    Usage:
        client = JumpCloudClient(load_settings())
        body = client.do_request("GET", "/api/v2/usergroups/abc123")
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[Transport] = None,
        wait: Callable[[float, Optional[threading.Event]], bool] = _interruptible_wait,
        rng: Callable[[], float] = random.random,
    ):
        """Initialize JumpCloud client.

        Args:
            config: Immutable provider configuration
            transport: Single-shot sender (defaults to requests-based Transport)
            wait: Backoff sleeper returning True when cancelled
            rng: Jitter source in [0, 1)
        """
        self.config = config
        self.transport = transport or Transport()
        self._wait = wait
        self._rng = rng

    def with_org(self, org_id: str) -> "JumpCloudClient":
        """Return a client scoped to another organization, sharing the transport."""
        return JumpCloudClient(self.config.with_org(org_id), self.transport, self._wait, self._rng)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def do_request(
        self,
        method: str,
        path: str,
        body: Body = None,
        *,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> bytes:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: API path relative to the base URL, query string included
            body: Pre-serialized JSON bytes/str or a JSON-serializable object
            cancel: Event that aborts pending backoff sleeps when set
            deadline: time.monotonic() value after which no attempt starts

        Returns:
            Raw response body bytes

        Raises:
            JumpCloudAPIError: Classified HTTP failure (last one when retries run out)
            JumpCloudTransportError: Network failure after all attempts
            RequestCancelledError: Cancel signal or deadline hit
        """
        method = method.upper()
        payload = self._encode_body(body)
        url = self._build_url(path)
        headers = self._headers()
        state = RetryState(key=f"{method} {path}")

        while True:
            timeout = self._attempt_timeout(state, cancel, deadline)
            state.attempt += 1
            try:
                return self.transport.send(method, url, payload, headers, timeout=timeout)
            except HTTPStatusError as e:
                err: Union[JumpCloudAPIError, JumpCloudTransportError] = classify_response(
                    e.status_code, e.body, e.headers, state.key
                )
            except JumpCloudTransportError as e:
                err = e

            err.attempts = state.attempt
            if not err.kind.retryable:
                logger.debug(f"{state.key} failed with {err.kind.value}; not retrying")
                raise err
            if state.attempt >= self.config.max_attempts:
                logger.warning(f"{state.key} giving up after {state.attempt} attempts: {err}")
                raise err

            delay = self._backoff_delay(state.attempt, getattr(err, "retry_after", None))
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise RequestCancelledError(f"{state.key}: deadline reached before retry") from err

            logger.warning(
                f"{state.key} failed with {err.kind.value} "
                f"(attempt {state.attempt}/{self.config.max_attempts}); retrying in {delay:.2f}s"
            )
            if self._wait(delay, cancel):
                raise RequestCancelledError(f"{state.key}: cancelled during backoff") from err
            state.elapsed_backoff += delay

    def _attempt_timeout(
        self,
        state: RetryState,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> float:
        """Check cancellation and return the socket timeout for the next attempt."""
        if cancel is not None and cancel.is_set():
            raise RequestCancelledError(f"{state.key}: cancelled")
        if deadline is None:
            return self.config.timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RequestCancelledError(f"{state.key}: deadline exceeded")
        return min(self.config.timeout, remaining)

    def _backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before the next attempt.

        Retry-After wins when present (capped at retry_after_max); otherwise
        exponential backoff capped at backoff_max with equal jitter.
        """
        if retry_after is not None:
            return min(retry_after, self.config.retry_after_max)
        ceiling = min(self.config.backoff_max, self.config.backoff_base * (2 ** (attempt - 1)))
        return ceiling / 2 + self._rng() * ceiling / 2

    def _headers(self) -> Dict[str, str]:
        headers = {
            "x-api-key": self.config.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
        }
        if self.config.org_id:
            headers["x-org-id"] = self.config.org_id
        return headers

    def _build_url(self, path: str) -> str:
        """Build full URL from a path relative to the API base."""
        base = self.config.api_url
        if path.startswith(("http://", "https://")):
            # nextPageURL style links; never send the API key to another host
            if not path.startswith(base + "/"):
                raise ValueError(f"Refusing to call URL outside {base}: {path}")
            return path
        if not path.startswith("/"):
            path = "/" + path
        if base.endswith("/api") and path.startswith("/api/"):
            base = base[: -len("/api")]
        return f"{base}{path}"

    @staticmethod
    def _encode_body(body: Body) -> Optional[bytes]:
        """Serialize the body and make sure it is valid JSON."""
        if body is None:
            return None
        if isinstance(body, (bytes, bytearray)):
            raw = bytes(body)
        elif isinstance(body, str):
            raw = body.encode("utf-8")
        else:
            return json.dumps(body).encode("utf-8")
        try:
            json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise ValueError(f"Request body is not valid JSON: {e}") from None
        return raw

    # =========================================================================
    # JSON helpers
    # =========================================================================

    def request_json(self, method: str, path: str, body: Body = None, params: Optional[QueryParams] = None) -> Any:
        """do_request() plus query encoding and JSON decoding of the response."""
        if params:
            path = with_query(path, params)
        raw = self.do_request(method, path, body)
        return decode_json(raw)

    def get(self, path: str, params: Optional[QueryParams] = None) -> Any:
        """Make a GET request."""
        return self.request_json("GET", path, params=params)

    def post(self, path: str, json_body: Body = None) -> Any:
        """Make a POST request."""
        return self.request_json("POST", path, json_body)

    def put(self, path: str, json_body: Body = None) -> Any:
        """Make a PUT request."""
        return self.request_json("PUT", path, json_body)

    def delete(self, path: str) -> Any:
        """Make a DELETE request."""
        return self.request_json("DELETE", path)


def with_query(path: str, params: QueryParams) -> str:
    """Append URL-encoded params to path, dropping None values."""
    items = params.items() if isinstance(params, Mapping) else params
    filtered = [(k, v) for k, v in items if v is not None]
    if not filtered:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(filtered, doseq=True)}"


def decode_json(raw: bytes) -> Any:
    """Decode a response body; empty bodies decode to None."""
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise ValueError(f"Invalid JSON response: {e}") from None
