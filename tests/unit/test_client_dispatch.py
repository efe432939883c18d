import json
from dataclasses import replace
import threading
import time

import pytest

from jcprovider.core.jumpcloud import (
    ErrorKind,
    JumpCloudAPIError,
    JumpCloudClient,
    JumpCloudTransportError,
    RequestCancelledError,
)
from jcprovider.core.jumpcloud.client import decode_json, with_query


def _client(config, transport, wait, rng=lambda: 0.5):
    return JumpCloudClient(config, transport=transport, wait=wait, rng=rng)


# ─────────────────────────────────────────────────────────────────────────────
# Retry policy
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("status", [404, 409, 400, 422, 401, 403])
def test_non_retryable_errors_fail_after_one_attempt(config, no_wait, make_transport, make_http_error, status):
    transport = make_transport(make_http_error(status, {"message": "nope"}))
    client = _client(config, transport, no_wait)

    with pytest.raises(JumpCloudAPIError) as exc:
        client.do_request("GET", "/api/v2/usergroups/abc")

    assert len(transport.calls) == 1
    assert exc.value.status_code == status
    assert exc.value.attempts == 1
    assert no_wait.delays == []


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_retryable_errors_exhaust_max_attempts(config, no_wait, make_transport, make_http_error, status):
    transport = make_transport(make_http_error(status))
    client = _client(config, transport, no_wait)

    with pytest.raises(JumpCloudAPIError) as exc:
        client.do_request("GET", "/api/v2/usergroups/abc")

    assert len(transport.calls) == config.max_attempts
    assert exc.value.attempts == config.max_attempts
    assert exc.value.kind.retryable
    assert f"after {config.max_attempts} attempts" in str(exc.value)
    assert len(no_wait.delays) == config.max_attempts - 1


def test_transport_errors_are_retried(config, no_wait, make_transport):
    transport = make_transport(JumpCloudTransportError("connection reset", "https://api.test/x"))
    client = _client(config, transport, no_wait)

    with pytest.raises(JumpCloudTransportError) as exc:
        client.do_request("GET", "/api/systemusers")

    assert exc.value.kind is ErrorKind.TRANSPORT
    assert exc.value.attempts == config.max_attempts
    assert len(transport.calls) == config.max_attempts


def test_transient_then_success_returns_body(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(503), make_http_error(502), b'{"_id": "u1"}')
    client = _client(config, transport, no_wait)

    body = client.do_request("GET", "/api/systemusers/u1")

    assert body == b'{"_id": "u1"}'
    assert len(transport.calls) == 3
    assert len(no_wait.delays) == 2


def test_retry_after_header_overrides_backoff(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(429, headers={"Retry-After": "3"}), b"{}")
    client = _client(config, transport, no_wait)

    client.do_request("GET", "/api/systemusers")

    assert no_wait.delays == [3.0]


def test_retry_after_is_capped(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(429, headers={"Retry-After": "3600"}), b"{}")
    client = _client(config, transport, no_wait)

    client.do_request("GET", "/api/systemusers")

    assert no_wait.delays == [config.retry_after_max]


def test_backoff_grows_and_stays_bounded(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(503))
    client = _client(config, transport, no_wait, rng=lambda: 1.0)

    with pytest.raises(JumpCloudAPIError):
        client.do_request("GET", "/api/systemusers")

    # base 0.1, cap 1.0, rng pinned to the top of the jitter window
    assert no_wait.delays == pytest.approx([0.1, 0.2, 0.4])
    assert all(d <= config.backoff_max for d in no_wait.delays)


def test_backoff_jitter_floor_is_half_the_ceiling(config):
    client = _client(config, None, lambda d, c: False, rng=lambda: 0.0)
    assert client._backoff_delay(1) == pytest.approx(0.05)
    assert client._backoff_delay(10) == pytest.approx(config.backoff_max / 2)


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation
# ─────────────────────────────────────────────────────────────────────────────
def test_cancel_before_first_attempt_sends_nothing(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RequestCancelledError):
        client.do_request("GET", "/api/systemusers", cancel=cancel)

    assert transport.calls == []


def test_cancel_during_backoff_stops_retrying(config, make_transport, make_http_error):
    transport = make_transport(make_http_error(503))
    client = _client(config, transport, lambda delay, cancel: True)

    with pytest.raises(RequestCancelledError) as exc:
        client.do_request("GET", "/api/systemusers", cancel=threading.Event())

    assert len(transport.calls) == 1
    assert isinstance(exc.value.__cause__, JumpCloudAPIError)


def test_expired_deadline_sends_nothing(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)

    with pytest.raises(RequestCancelledError):
        client.do_request("GET", "/api/systemusers", deadline=time.monotonic() - 1)

    assert transport.calls == []


def test_deadline_shorter_than_backoff_stops_retrying(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(429, headers={"Retry-After": "30"}))
    client = _client(config, transport, no_wait)

    with pytest.raises(RequestCancelledError):
        client.do_request("GET", "/api/systemusers", deadline=time.monotonic() + 5)

    assert len(transport.calls) == 1
    assert no_wait.delays == []


def test_deadline_bounds_attempt_timeout(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)

    client.do_request("GET", "/api/systemusers", deadline=time.monotonic() + 1)

    assert 0 < transport.calls[0]["timeout"] <= 1


def test_default_timeout_comes_from_config(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    _client(config, transport, no_wait).do_request("GET", "/api/systemusers")
    assert transport.calls[0]["timeout"] == config.timeout


# ─────────────────────────────────────────────────────────────────────────────
# Request shape
# ─────────────────────────────────────────────────────────────────────────────
def test_auth_and_org_headers_are_sent(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    _client(config, transport, no_wait).do_request("GET", "/api/systemusers")

    headers = transport.calls[0]["headers"]
    assert headers["x-api-key"] == "test-key"
    assert headers["x-org-id"] == "test-org"
    assert headers["Accept"] == "application/json"
    assert headers["Content-Type"] == "application/json"
    assert headers["User-Agent"]


def test_org_header_omitted_without_org(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config.with_org(""), transport, no_wait)

    client.do_request("GET", "/api/systemusers")

    assert "x-org-id" not in transport.calls[0]["headers"]


def test_with_org_shares_transport(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    child = _client(config, transport, no_wait).with_org("other-org")

    child.do_request("GET", "/api/systemusers")

    assert child.transport is transport
    assert transport.calls[0]["headers"]["x-org-id"] == "other-org"


@pytest.mark.parametrize(
    "api_url, path, expected",
    [
        ("https://api.test", "/api/v2/usergroups", "https://api.test/api/v2/usergroups"),
        ("https://api.test/api", "/api/v2/usergroups", "https://api.test/api/v2/usergroups"),
        ("https://api.test/api", "/v2/usergroups", "https://api.test/api/v2/usergroups"),
        ("https://api.test", "api/systemusers", "https://api.test/api/systemusers"),
    ],
)
def test_url_building(config, no_wait, make_transport, api_url, path, expected):
    transport = make_transport(b"{}")
    client = _client(replace(config, api_url=api_url), transport, no_wait)

    client.do_request("GET", path)

    assert transport.calls[0]["url"] == expected


def test_absolute_url_outside_base_is_refused(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)

    with pytest.raises(ValueError):
        client.do_request("GET", "https://evil.example/api/systemusers")

    assert transport.calls == []


def test_absolute_url_under_base_is_allowed(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)

    client.do_request("GET", "https://api.test/api/v2/usergroups?skip=100")

    assert transport.calls[0]["url"] == "https://api.test/api/v2/usergroups?skip=100"


def test_invalid_json_body_is_rejected_before_sending(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    client = _client(config, transport, no_wait)

    with pytest.raises(ValueError, match="not valid JSON"):
        client.do_request("POST", "/api/systemusers", b"{not json")

    assert transport.calls == []


def test_dict_body_is_serialized(config, no_wait, make_transport):
    transport = make_transport(b"{}")
    _client(config, transport, no_wait).do_request("post", "/api/systemusers", {"username": "alice"})

    call = transport.calls[0]
    assert call["method"] == "POST"
    assert json.loads(call["body"]) == {"username": "alice"}


def test_error_endpoint_names_method_and_path(config, no_wait, make_transport, make_http_error):
    transport = make_transport(make_http_error(404, {"message": "gone"}))

    with pytest.raises(JumpCloudAPIError) as exc:
        _client(config, transport, no_wait).do_request("DELETE", "/api/systemusers/u1")

    assert exc.value.endpoint == "DELETE /api/systemusers/u1"
    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_concurrent_calls_do_not_share_retry_state(config, make_transport, make_http_error):
    transport = make_transport(make_http_error(503))
    client = _client(config, transport, lambda d, c: False)
    errors = []

    def _call():
        try:
            client.do_request("GET", "/api/systemusers")
        except JumpCloudAPIError as e:
            errors.append(e)

    threads = [threading.Thread(target=_call) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(errors) == 4
    assert all(e.attempts == config.max_attempts for e in errors)
    assert len(transport.calls) == 4 * config.max_attempts


# ─────────────────────────────────────────────────────────────────────────────
# JSON helpers
# ─────────────────────────────────────────────────────────────────────────────
def test_get_encodes_params_and_decodes(config, no_wait, make_transport):
    transport = make_transport(b'{"totalCount": 0, "results": []}')
    client = _client(config, transport, no_wait)

    data = client.get("/api/systemusers", params={"limit": 10, "search": None, "fields": ["a", "b"]})

    assert data == {"totalCount": 0, "results": []}
    assert transport.calls[0]["url"] == "https://api.test/api/systemusers?limit=10&fields=a&fields=b"


def test_with_query_appends_to_existing_query():
    assert with_query("/x?a=1", {"b": 2}) == "/x?a=1&b=2"
    assert with_query("/x", {"b": None}) == "/x"


def test_decode_json():
    assert decode_json(b"") is None
    assert decode_json(b"[1]") == [1]
    with pytest.raises(ValueError, match="Invalid JSON response"):
        decode_json(b"<html>")
