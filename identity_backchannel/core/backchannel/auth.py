"""OAuth2 discovery and client credentials exchange.

Both calls are coroutines so a caller can cancel a hung network call by
cancelling the awaiting task. Neither raises on protocol or network failure:
failures come back as a result object flagged with ``is_error``.
"""
from __future__ import annotations
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from .errors import ErrorCategory, ErrorResponse, ErrorType

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
TOKEN_PATH = "/connect/token"


def discovery_url(authority_url: str) -> str:
    return authority_url.rstrip("/") + DISCOVERY_PATH


def default_token_endpoint(authority_url: str) -> str:
    """Token endpoint assumed when discovery is off or yields nothing."""
    return authority_url.rstrip("/") + TOKEN_PATH


@dataclass
class DiscoveryDocument:
    """Authority metadata, or the reason it could not be read."""
    token_endpoint: Optional[str] = None
    issuer: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_error_response(self) -> ErrorResponse:
        """Describe the failure as a General/Critical error model.

        The unhandled exception flag and stack text are set when the failure
        came from a raised exception. Empty when the document was read.
        """
        response = ErrorResponse()
        if not self.is_error:
            return response
        stack_trace = ""
        if self.exception is not None:
            exc = self.exception
            stack_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            response.has_unhandled_exception = True
        response.add(self.error, ErrorCategory.GENERAL, ErrorType.CRITICAL, stack_trace=stack_trace)
        return response


@dataclass
class AuthToken:
    """Result of a client credentials exchange.

    Attributes:
        access_token: Bearer token (empty on error)
        token_type: Token type reported by the server
        expires_in: Lifetime in seconds, if reported
        scope: Granted scope, if reported
        is_error: True when the exchange failed
        error: Error code or fault text
        error_description: Optional server-provided description
    """
    access_token: str = field(default="", repr=False)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    is_error: bool = False
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def failed(cls, error: str, description: Optional[str] = None) -> "AuthToken":
        return cls(is_error=True, error=error, error_description=description)


async def fetch_discovery_document(
    authority_url: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DiscoveryDocument:
    """Read the authority's discovery document.

    Args:
        authority_url: Identity server base URL
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        DiscoveryDocument; ``error`` is set when the document is unavailable
        or names no token endpoint
    """
    url = discovery_url(authority_url)
    logger.debug("Fetching discovery document from %s", url)
    client_kwargs = {"transport": transport} if transport is not None else {}
    try:
        async with httpx.AsyncClient(**client_kwargs) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        return DiscoveryDocument(error=f"Error connecting to {url}: {exc}", exception=exc)

    if response.status_code >= 400:
        return DiscoveryDocument(
            error=f"Error connecting to {url}: {response.status_code} {response.reason_phrase}"
        )
    try:
        document = response.json()
    except ValueError as exc:
        return DiscoveryDocument(error=f"Invalid discovery document at {url}: {exc}", exception=exc)
    if not isinstance(document, dict):
        return DiscoveryDocument(error=f"Invalid discovery document at {url}: expected a JSON object")

    token_endpoint = document.get("token_endpoint")
    if not token_endpoint:
        return DiscoveryDocument(
            issuer=document.get("issuer"),
            raw=document,
            error=f"Discovery document at {url} does not declare a token_endpoint",
        )
    return DiscoveryDocument(token_endpoint=token_endpoint, issuer=document.get("issuer"), raw=document)


async def request_client_credentials_token(
    token_endpoint: str,
    client_id: str,
    client_secret: str,
    scope: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthToken:
    """Exchange client credentials for a bearer token.

    Client id and secret are sent with HTTP Basic authentication.

    Returns:
        AuthToken; ``is_error`` is set on protocol errors, HTTP faults,
        or a malformed token response
    """
    logger.debug("Requesting client credentials token from %s for client %s", token_endpoint, client_id)
    client_kwargs = {"transport": transport} if transport is not None else {}
    try:
        async with AsyncOAuth2Client(client_id, client_secret, **client_kwargs) as oauth:
            token = await oauth.fetch_token(
                token_endpoint,
                grant_type="client_credentials",
                scope=scope,
            )
    except OAuthError as exc:
        return AuthToken.failed(exc.error or "invalid_request", exc.description)
    except httpx.HTTPError as exc:
        return AuthToken.failed(str(exc) or exc.__class__.__name__)
    except ValueError as exc:
        return AuthToken.failed(f"Invalid token response: {exc}")

    access_token = token.get("access_token")
    if not access_token:
        return AuthToken.failed("Token response does not contain an access_token")
    expires_in = token.get("expires_in")
    return AuthToken(
        access_token=access_token,
        token_type=token.get("token_type") or "Bearer",
        expires_in=int(expires_in) if expires_in is not None else None,
        scope=token.get("scope"),
    )
