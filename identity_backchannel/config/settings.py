"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..core.backchannel.client import DEFAULT_CLIENT_ID, DEFAULT_SCOPE

logger = logging.getLogger(__name__)

SECRETS_DIR = "/run/secrets"


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
    secret_file = Path(SECRETS_DIR) / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.debug("Loaded %s from %s", secret_name, SECRETS_DIR)
                return secret_value
        except OSError as e:
            logger.warning("Failed to read %s/%s: %s", SECRETS_DIR, secret_name, e)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.debug("Loaded %s from environment", env_var)
            return secret_value

    return None


def _get_bool(var_name: str, default: bool) -> bool:
    value = os.environ.get(var_name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_required(var_name: str) -> str:
    value = os.environ.get(var_name, "").strip()
    if not value:
        raise RuntimeError(f"Environment variable {var_name} is required.")
    return value


@dataclass
class BackchannelConfig:
    """Backchannel client configuration container."""
    authority_url: str
    resource_url: str
    client_secret: str = field(default="", repr=False)
    client_id: str = DEFAULT_CLIENT_ID
    scope: str = DEFAULT_SCOPE
    use_discovery: bool = True
    use_default_credentials: bool = True
    request_timeout: Optional[float] = None


def load_settings() -> BackchannelConfig:
    """Load backchannel settings from environment and /run/secrets.

    Raises:
        RuntimeError: If a required value is missing or malformed
    """
    authority_url = _get_required("BACKCHANNEL_AUTHORITY_URL")
    resource_url = _get_required("BACKCHANNEL_RESOURCE_URL")

    client_secret = _load_secret_from_file("backchannel_client_secret", "BACKCHANNEL_CLIENT_SECRET")
    if not client_secret:
        raise RuntimeError(
            "BACKCHANNEL_CLIENT_SECRET not found in /run/secrets or environment"
        )

    client_id = os.environ.get("BACKCHANNEL_CLIENT_ID", "").strip() or DEFAULT_CLIENT_ID
    scope = os.environ.get("BACKCHANNEL_SCOPE", "").strip() or DEFAULT_SCOPE
    use_discovery = _get_bool("BACKCHANNEL_USE_DISCOVERY", True)
    use_default_credentials = _get_bool("BACKCHANNEL_USE_DEFAULT_CREDENTIALS", True)

    request_timeout = None
    timeout_str = os.environ.get("BACKCHANNEL_REQUEST_TIMEOUT", "").strip()
    if timeout_str:
        try:
            request_timeout = float(timeout_str)
        except ValueError:
            raise RuntimeError(f"BACKCHANNEL_REQUEST_TIMEOUT must be a number, got {timeout_str!r}")

    logger.info(
        "Backchannel settings: authority=%s; resource=%s; client_id=%s; discovery=%s",
        authority_url,
        resource_url,
        client_id,
        use_discovery,
    )

    return BackchannelConfig(
        authority_url=authority_url,
        resource_url=resource_url,
        client_secret=client_secret,
        client_id=client_id,
        scope=scope,
        use_discovery=use_discovery,
        use_default_credentials=use_default_credentials,
        request_timeout=request_timeout,
    )
