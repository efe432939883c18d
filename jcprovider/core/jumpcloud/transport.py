"""Single-shot HTTP transport for the JumpCloud API.

One call, one network round trip. No retry, no classification: non-2xx
responses raise HTTPStatusError and network failures raise
JumpCloudTransportError so the dispatcher can decide what to do.
"""
from __future__ import annotations
import logging
from typing import Dict, Optional

import requests

from .exceptions import HTTPStatusError, JumpCloudTransportError

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


class Transport:
    """Stateless sender built on requests.

    Safe to share across threads: every call goes through requests.request
    without a shared Session.
    """

    def send(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """Perform exactly one HTTP call.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            url: Absolute URL, query string already encoded
            body: JSON body bytes or None
            headers: Request headers
            timeout: Socket timeout in seconds

        Returns:
            Response body bytes (empty for 204)

        Raises:
            HTTPStatusError: On non-2xx status
            JumpCloudTransportError: On timeout, connection or DNS failure
        """
        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        try:
            resp = requests.request(method, url, data=body, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            raise JumpCloudTransportError(f"request timed out after {timeout} seconds: {e}", url) from e
        except requests.ConnectionError as e:
            raise JumpCloudTransportError(str(e), url) from e
        except requests.RequestException as e:
            raise JumpCloudTransportError(str(e), url) from e

        logger.debug(f"{method} {url} -> {resp.status_code}")
        if not 200 <= resp.status_code < 300:
            raise HTTPStatusError(resp.status_code, resp.content, resp.headers, url)
        return resp.content or b""
