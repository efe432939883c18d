"""Pytest shared fixtures for the JumpCloud client and reconciliation tests."""
import json
import pathlib
import sys
from typing import Any, Dict, List, Optional, Tuple

# Add project root to Python path (scripts/ is not an installed package)
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from jcprovider.config.settings import ProviderConfig
from jcprovider.core.jumpcloud import HTTPStatusError, classify_response


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from hitting the real JumpCloud API.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests, "request", _refuse)


@pytest.fixture(autouse=True)
def _clean_jumpcloud_env(monkeypatch):
    for var in (
        "JUMPCLOUD_API_KEY",
        "JUMPCLOUD_ORG_ID",
        "JUMPCLOUD_API_URL",
        "JUMPCLOUD_TIMEOUT",
        "JUMPCLOUD_MAX_ATTEMPTS",
        "JUMPCLOUD_BACKOFF_BASE",
        "JUMPCLOUD_BACKOFF_MAX",
        "JUMPCLOUD_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────
class FakeTransport:
    """Scripted transport: each send() pops the next outcome.

    Outcomes are bytes (success) or exceptions (raised). The last outcome is
    reused once the script runs out.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [b"{}"]
        self.calls: List[Dict[str, Any]] = []

    def send(self, method, url, body=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "body": body, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def http_error(status: int, payload: Any = None, headers: Optional[Dict[str, str]] = None) -> HTTPStatusError:
    """Build the raw error a transport raises for a non-2xx status."""
    if payload is None:
        body = b""
    elif isinstance(payload, (bytes, str)):
        body = payload.encode() if isinstance(payload, str) else payload
    else:
        body = json.dumps(payload).encode()
    return HTTPStatusError(status, body, headers or {}, "https://api.test/x")


class FakeRequester:
    """In-memory stand-in for JumpCloudClient.do_request.

    Routes map (method, path) to a queue of (status, payload) responses; the
    last response for a route is sticky.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Any]]] = {}
        self.calls: List[Tuple[str, str, Any]] = []

    def add(self, method: str, path: str, payload: Any = None, status: int = 200) -> "FakeRequester":
        self.routes.setdefault((method, path), []).append((status, payload))
        return self

    def do_request(self, method, path, body=None):
        self.calls.append((method, path, body))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {path}")
        status, payload = queue.pop(0) if len(queue) > 1 else queue[0]
        raw = b"" if payload is None else json.dumps(payload).encode()
        if status >= 400:
            raise classify_response(status, raw, {}, f"{method} {path}")
        return raw

    def count(self, method: str, path: Optional[str] = None) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and (path is None or p == path))


@pytest.fixture()
def config():
    return ProviderConfig(
        api_key="test-key",
        org_id="test-org",
        api_url="https://api.test",
        timeout=5,
        max_attempts=4,
        backoff_base=0.1,
        backoff_max=1.0,
    )


@pytest.fixture()
def fake_requester():
    return FakeRequester()


@pytest.fixture()
def no_wait():
    """Backoff sleeper that records delays instead of sleeping."""
    delays: List[float] = []

    def _wait(delay, cancel):
        delays.append(delay)
        return False

    _wait.delays = delays
    return _wait


@pytest.fixture()
def make_transport():
    return FakeTransport


@pytest.fixture()
def make_http_error():
    return http_error
