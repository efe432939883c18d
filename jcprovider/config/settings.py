"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://console.jumpcloud.com"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 0.5
DEFAULT_BACKOFF_MAX = 30.0
DEFAULT_RETRY_AFTER_MAX = 60.0
DEFAULT_USER_AGENT = "jcprovider/0.1"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info(f"[settings] Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            logger.warning(f"[settings] Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.debug(f"[settings] Loaded {env_var} from environment")
            return secret_value

    return None


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable client configuration shared by every resource module."""
    api_key: str
    org_id: str = ""
    api_url: str = DEFAULT_API_URL

    # Transport
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT

    # Retry policy
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    retry_after_max: float = DEFAULT_RETRY_AFTER_MAX

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("api_key is required")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff delays must not be negative")
        object.__setattr__(self, "api_url", self.api_url.rstrip("/"))

    def with_org(self, org_id: str) -> "ProviderConfig":
        """Return a copy scoped to another organization."""
        return replace(self, org_id=org_id)

    def __repr__(self) -> str:
        # Keep the API key out of logs and tracebacks
        return (
            f"ProviderConfig(api_url={self.api_url!r}, org_id={self.org_id!r}, "
            f"max_attempts={self.max_attempts}, timeout={self.timeout})"
        )


def _env_number(var_name: str, default: float, cast=float):
    raw = os.environ.get(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a number, got {raw!r}") from None


def load_settings(api_key: Optional[str] = None, org_id: Optional[str] = None, api_url: Optional[str] = None) -> ProviderConfig:
    """Load provider settings from arguments, /run/secrets and environment.

    Explicit arguments win over secrets, which win over environment variables.

    Raises:
        RuntimeError: If no API key can be found
        ValueError: If a numeric variable is malformed
    """
    api_key = api_key or _load_secret_from_file("jumpcloud_api_key", "JUMPCLOUD_API_KEY")
    if not api_key:
        raise RuntimeError(
            "Environment variable JUMPCLOUD_API_KEY is required "
            "(or provide /run/secrets/jumpcloud_api_key)."
        )

    org_id = org_id if org_id is not None else os.environ.get("JUMPCLOUD_ORG_ID", "")
    api_url = api_url or os.environ.get("JUMPCLOUD_API_URL") or DEFAULT_API_URL

    config = ProviderConfig(
        api_key=api_key,
        org_id=org_id,
        api_url=api_url,
        timeout=_env_number("JUMPCLOUD_TIMEOUT", DEFAULT_TIMEOUT),
        max_attempts=_env_number("JUMPCLOUD_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, int),
        backoff_base=_env_number("JUMPCLOUD_BACKOFF_BASE", DEFAULT_BACKOFF_BASE),
        backoff_max=_env_number("JUMPCLOUD_BACKOFF_MAX", DEFAULT_BACKOFF_MAX),
    )
    logger.info(f"[settings] JumpCloud client configured for {config.api_url} (org: {config.org_id or 'default'})")
    return config
