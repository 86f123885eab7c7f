"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from mapping_sync.core.onelogin.client import DEFAULT_TIMEOUT, RetryPolicy
from mapping_sync.core.onelogin.mapping_order import TOGGLE_RETRY_POLICY


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
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets", file=sys.stderr)
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}", file=sys.stderr)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # OneLogin API credentials
    onelogin_client_id: str
    onelogin_client_secret: str
    onelogin_subdomain: str
    request_timeout: float = DEFAULT_TIMEOUT

    # Reconciliation
    state_file: str = ".runtime/state/mapping-order.json"
    toggle_retry: int = TOGGLE_RETRY_POLICY.retry_count
    toggle_retry_wait: float = TOGGLE_RETRY_POLICY.backoff_base
    toggle_backoff_exponent: int = TOGGLE_RETRY_POLICY.backoff_exponent_base

    # Logging
    log_level: str = "INFO"

    @property
    def toggle_retry_policy(self) -> RetryPolicy:
        """Retry policy for enable/disable updates issued during reconciliation."""
        return RetryPolicy(
            retry_count=self.toggle_retry,
            retriable_status_codes=TOGGLE_RETRY_POLICY.retriable_status_codes,
            backoff_base=self.toggle_retry_wait,
            backoff_exponent_base=self.toggle_backoff_exponent,
        )


def _require(var_name: str, value: str | None) -> str:
    if value:
        return value
    raise RuntimeError(f"Environment variable {var_name} is required.")


def _env_number(var_name: str, default, cast, minimum=None):
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a {cast.__name__}, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable {var_name} must be >= {minimum}, got {raw!r}")
    return value


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    client_id = _require("ONELOGIN_CLIENT_ID", os.environ.get("ONELOGIN_CLIENT_ID"))
    client_secret = _require(
        "ONELOGIN_CLIENT_SECRET",
        _load_secret_from_file("onelogin_client_secret", "ONELOGIN_CLIENT_SECRET"),
    )
    subdomain = _require("ONELOGIN_SUBDOMAIN", os.environ.get("ONELOGIN_SUBDOMAIN", "").strip())

    timeout = _env_number("ONELOGIN_TIMEOUT", DEFAULT_TIMEOUT, float)
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT

    config = AppConfig(
        onelogin_client_id=client_id,
        onelogin_client_secret=client_secret,
        onelogin_subdomain=subdomain,
        request_timeout=timeout,
        state_file=os.environ.get("MAPPING_STATE_FILE", ".runtime/state/mapping-order.json"),
        toggle_retry=_env_number("MAPPING_TOGGLE_RETRY", TOGGLE_RETRY_POLICY.retry_count, int, minimum=0),
        toggle_retry_wait=_env_number("MAPPING_TOGGLE_RETRY_WAIT", TOGGLE_RETRY_POLICY.backoff_base, float, minimum=0),
        toggle_backoff_exponent=_env_number(
            "MAPPING_TOGGLE_BACKOFF_EXPONENT", TOGGLE_RETRY_POLICY.backoff_exponent_base, int, minimum=0
        ),
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )

    print(f"[settings] subdomain={subdomain}; client_id={client_id}; timeout={timeout}s", file=sys.stderr)
    return config
