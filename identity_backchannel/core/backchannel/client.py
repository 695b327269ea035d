"""HTTP client for the identity server backchannel API.

Handles client credentials authentication, request construction and
error classification for the Backchannel REST endpoints.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import httpx
import requests
from requests.auth import AuthBase, HTTPBasicAuth

from .auth import (
    AuthToken,
    DiscoveryDocument,
    default_token_endpoint,
    fetch_discovery_document,
    request_client_credentials_token,
)
from .errors import ErrorCategory, ErrorResponse, ErrorType
from .exceptions import ErrorModelDecodeError, InvalidRequestError
from .models import (
    OrganizationRecord,
    OrganizationUserRecord,
    SubscriptionRecord,
    SubscriptionSeatRecord,
    UserRecord,
)
from .results import ApplicationError, RequestResult, Success, TransportFault

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CLIENT_ID = "backchannel"
DEFAULT_SCOPE = "vidsapi"
JSON_CONTENT_TYPE = "application/json"
BODY_METHODS = frozenset({"POST", "PUT", "DELETE"})

Credentials = Union[AuthBase, tuple]


class BearerAuth(AuthBase):
    """Attach ``Authorization: Bearer <token>`` to a request.

    When ``credentials`` are given they are applied first, so handlers that
    only add headers or cookies still take effect while the bearer token
    remains the Authorization header.
    """

    def __init__(self, token: str, credentials: Optional[Credentials] = None):
        self.token = token
        if isinstance(credentials, tuple):
            credentials = HTTPBasicAuth(*credentials)
        self.credentials = credentials

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        if self.credentials is not None:
            r = self.credentials(r)
        r.headers["Authorization"] = f"Bearer {self.token}"
        return r


@dataclass
class BackchannelRequest:
    """A fully built request, ready to execute."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    auth: Optional[Credentials] = field(default=None, repr=False)
    body: Optional[bytes] = field(default=None, repr=False)


def _require(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidRequestError(f"{name} is required")


def _list_of(decode: Callable[[Dict[str, Any]], T]) -> Callable[[List[Dict[str, Any]]], List[T]]:
    def _decode(items: List[Dict[str, Any]]) -> List[T]:
        if not isinstance(items, list):
            raise TypeError(f"expected a JSON array, got {type(items).__name__}")
        return [decode(item) for item in items]
    return _decode


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected a JSON boolean, got {type(value).__name__}")
    return value


class IdentityClient:
    """Client for the identity server backchannel API.

    Features:
    - Client credentials authentication, with optional endpoint discovery
    - Bearer token attached to every request once authenticated
    - Error bodies decoded into an :class:`ErrorResponse` that is reset per request
    - Transport faults captured on :attr:`last_exception` instead of raised

    A single instance is not safe for concurrent use; use one client per
    logical session.

    Usage:
        client = IdentityClient("https://id.example.com", "https://api.example.com", "secret")
        if asyncio.run(client.authenticate()):
            user = client.retrieve_user("abc")
            if user is None:
                print(client.error_response.messages)
    """

    def __init__(
        self,
        authority_url: str,
        resource_url: str,
        client_secret: str,
        client_id: Optional[str] = None,
        use_discovery: bool = True,
        *,
        scope: str = DEFAULT_SCOPE,
        session: Optional[requests.Session] = None,
        default_credentials: Optional[Credentials] = None,
        use_default_credentials: bool = True,
        request_timeout: Optional[float] = None,
        token_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client. No network I/O happens here.

        Args:
            authority_url: Identity server (token authority) base URL
            resource_url: Backchannel API base URL
            client_secret: Client credentials secret
            client_id: Client identifier (defaults to ``backchannel`` when blank)
            use_discovery: Resolve the token endpoint from the discovery document
            scope: Scope requested by :meth:`authenticate` when none is given
            session: requests session used for API calls
            default_credentials: requests auth (or ``(user, password)`` tuple) used
                when a request is built without explicit credentials
            use_default_credentials: When no credentials are configured, let the
                session pick up ambient credentials from the environment
                (``~/.netrc`` and proxy variables). Availability depends on the
                host platform. Disable to send requests with no ambient credentials.
            request_timeout: Per-request timeout in seconds (None leaves the
                transport default in place)
            token_transport: httpx transport for discovery and token calls
        """
        _require(authority_url, "authority_url")
        _require(resource_url, "resource_url")
        self.authority_url = authority_url
        self.resource_url = resource_url
        self.client_id = client_id if client_id and client_id.strip() else DEFAULT_CLIENT_ID
        self.use_discovery = use_discovery
        self.scope = scope or DEFAULT_SCOPE
        self.default_credentials = default_credentials
        self.use_default_credentials = use_default_credentials
        self.request_timeout = request_timeout
        self.token_transport = token_transport
        self._client_secret = client_secret
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()
        if not use_default_credentials:
            self.session.trust_env = False
        self._token: Optional[AuthToken] = None
        self._error_response = ErrorResponse()
        self._last_exception: Optional[requests.RequestException] = None
        self._last_result: Optional[RequestResult] = None

    @classmethod
    def from_settings(cls, config, **kwargs) -> "IdentityClient":
        """Build a client from a :class:`BackchannelConfig`."""
        return cls(
            config.authority_url,
            config.resource_url,
            config.client_secret,
            client_id=config.client_id,
            use_discovery=config.use_discovery,
            scope=config.scope,
            use_default_credentials=config.use_default_credentials,
            request_timeout=config.request_timeout,
            **kwargs,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────────
    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    @property
    def has_authenticated(self) -> bool:
        """True when a token is held and its exchange did not fail."""
        return self._token is not None and not self._token.is_error

    @property
    def error_response(self) -> ErrorResponse:
        return self._error_response

    @property
    def last_exception(self) -> Optional[requests.RequestException]:
        return self._last_exception

    @property
    def last_result(self) -> Optional[RequestResult]:
        """Outcome of the most recent request, if any."""
        return self._last_result

    @property
    def has_errors(self) -> bool:
        """True when the last request failed or blocking errors are recorded."""
        return (
            self._last_exception is not None
            or isinstance(self._last_result, ApplicationError)
            or self._error_response.has_blocking_errors
        )

    def reset_errors(self) -> None:
        self._error_response.reset()
        self._last_exception = None
        self._last_result = None

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "IdentityClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Authentication
    # ─────────────────────────────────────────────────────────────────────────
    async def retrieve_discovery(self) -> DiscoveryDocument:
        """Fetch the authority's discovery document."""
        return await fetch_discovery_document(self.authority_url, transport=self.token_transport)

    async def request_client_credentials(
        self,
        token_endpoint: str,
        client_id: str,
        scope: str,
    ) -> AuthToken:
        """Exchange this client's secret for a token at ``token_endpoint``."""
        _require(token_endpoint, "token_endpoint")
        return await request_client_credentials_token(
            token_endpoint,
            client_id,
            self._client_secret,
            scope=scope,
            transport=self.token_transport,
        )

    async def authenticate(self, scope: Optional[str] = None) -> bool:
        """Obtain and store a bearer token.

        Discovery failure is not fatal: a warning is recorded and the token
        endpoint falls back to ``<authority>/connect/token``. Cancel the
        awaiting task to abort a hung call.

        Args:
            scope: Requested scope (defaults to the client scope, ``vidsapi``)

        Returns:
            True if the token exchange succeeded
        """
        scope = scope or self.scope
        token_endpoint = ""
        if self.use_discovery:
            discovery = await self.retrieve_discovery()
            if discovery.is_error:
                logger.warning("Discovery failed for %s: %s", self.authority_url, discovery.error)
                self._error_response.add(discovery.error, ErrorCategory.APPLICATION, ErrorType.WARNING)
            else:
                token_endpoint = discovery.token_endpoint or ""

        if not token_endpoint:
            token_endpoint = default_token_endpoint(self.authority_url)

        self._token = await self.request_client_credentials(token_endpoint, self.client_id, scope)

        if self._token.is_error:
            logger.warning("Token exchange failed for client %s: %s", self.client_id, self._token.error)
            self._error_response.add(self._token.error or "", ErrorCategory.SECURITY, ErrorType.CRITICAL)
            return False

        logger.info("Authenticated client %s against %s", self.client_id, token_endpoint)
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Request construction and execution
    # ─────────────────────────────────────────────────────────────────────────
    def create_request(
        self,
        relative_path: str,
        method: Optional[str] = "GET",
        no_cache: bool = True,
        credentials: Optional[Credentials] = None,
        content_type: str = JSON_CONTENT_TYPE,
    ) -> BackchannelRequest:
        """Build a request against the resource URL.

        Path values are interpolated as given; callers supply URL-safe values.

        Args:
            relative_path: Path below the resource URL (e.g. ``Backchannel/Users/1``)
            method: HTTP method (defaults to GET)
            no_cache: Ask intermediaries not to cache the response
            credentials: requests auth for this request (defaults to the
                configured default credentials)
            content_type: Content-Type header value

        Raises:
            InvalidRequestError: If relative_path is blank
        """
        _require(relative_path, "relative_path")
        method = (method or "GET").upper()
        url = f"{self.resource_url.rstrip('/')}/{relative_path.lstrip('/')}"

        headers = {
            "Accept": JSON_CONTENT_TYPE,
            "Content-Type": content_type,
            "User-Agent": self.client_id,
        }
        if no_cache:
            headers["Cache-Control"] = "no-cache, no-store"
            headers["Pragma"] = "no-cache"

        if credentials is None:
            credentials = self.default_credentials
        if self.has_authenticated:
            headers["Authorization"] = f"Bearer {self._token.access_token}"
            credentials = BearerAuth(self._token.access_token, credentials)

        return BackchannelRequest(method=method, url=url, headers=headers, auth=credentials)

    def request_content(self, request: BackchannelRequest) -> str:
        """Execute a request and return the raw response body ("" when none)."""
        if request is None:
            raise InvalidRequestError("request is required")
        return self._execute(request).body

    def request_content_with_body(self, request: BackchannelRequest, body_model: Any) -> str:
        """Serialize ``body_model`` as JSON, send it, and return the raw response body.

        Raises:
            InvalidRequestError: If the request or model is missing, or the
                method does not carry a body
        """
        if request is None:
            raise InvalidRequestError("request is required")
        if body_model is None:
            raise InvalidRequestError("body_model is required")
        if request.method not in BODY_METHODS:
            raise InvalidRequestError(f"A request body cannot be sent with a {request.method} request")
        payload = body_model.to_dict() if hasattr(body_model, "to_dict") else body_model
        return self.request_content(replace(request, body=json.dumps(payload).encode("utf-8")))

    def _execute(self, request: BackchannelRequest) -> RequestResult:
        self.reset_errors()
        logger.debug("%s %s", request.method, request.url)
        try:
            response = self.session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                auth=request.auth,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", request.method, request.url, exc)
            self._last_exception = exc
            result = self._fault_result(exc)
        else:
            result = self._response_result(response)
        self._last_result = result
        return result

    def _response_result(self, response: requests.Response) -> RequestResult:
        body = response.text or ""
        if response.status_code < 400:
            return Success(status_code=response.status_code, body=body)
        logger.warning("%s returned %s", response.url, response.status_code)
        error_response = self._record_error_body(response.status_code, body)
        return ApplicationError(status_code=response.status_code, body=body, error_response=error_response)

    def _fault_result(self, exc: requests.RequestException) -> TransportFault:
        response = exc.response
        if response is None:
            return TransportFault(exception=exc)
        body = response.text or ""
        error_response = None
        if response.status_code >= 400:
            error_response = self._record_error_body(response.status_code, body)
        return TransportFault(
            exception=exc,
            status_code=response.status_code,
            body=body,
            error_response=error_response,
        )

    def _record_error_body(self, status_code: int, body: str) -> Optional[ErrorResponse]:
        """Replace the held error state with a decoded error body, if there is one."""
        if not body.strip():
            return None
        try:
            error_response = ErrorResponse.from_json(body)
        except ErrorModelDecodeError as exc:
            logger.warning("Undecodable error body for status %s: %s", status_code, exc)
            error_response = ErrorResponse(has_unhandled_exception=True)
            error_response.add(
                f"HTTP {status_code}: {body}",
                ErrorCategory.SYSTEM,
                ErrorType.CRITICAL,
            )
        self._error_response = error_response
        return error_response

    def _request_record(self, request: BackchannelRequest, decode: Callable[[Any], T]) -> Optional[T]:
        """Execute and decode the body, or return None on empty body or failure."""
        result = self._execute(request)
        if not isinstance(result, Success) or not result.body.strip() or self.has_errors:
            return None
        try:
            return decode(json.loads(result.body))
        except (TypeError, ValueError) as exc:
            logger.warning("Malformed response from %s: %s", request.url, exc)
            self._error_response.has_unhandled_exception = True
            self._error_response.add(
                f"Malformed response from {request.url}: {exc}",
                ErrorCategory.SYSTEM,
                ErrorType.CRITICAL,
            )
            return None

    # ─────────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────────
    def retrieve_user(self, user_id: str) -> Optional[UserRecord]:
        _require(user_id, "user_id")
        request = self.create_request(f"Backchannel/Users/{user_id}")
        return self._request_record(request, UserRecord.from_dict)

    def retrieve_users(
        self,
        user_name: str = "",
        email: str = "",
        phone: str = "",
        order_by: str = "UserName",
        direction: str = "ascending",
    ) -> Optional[List[UserRecord]]:
        """Search users; empty filters match everything."""
        request = self.create_request(
            f"Backchannel/Users?userName={user_name}&email={email}&phone={phone}"
            f"&orderBy={order_by}&direction={direction}"
        )
        return self._request_record(request, _list_of(UserRecord.from_dict))

    # ─────────────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────────────
    def retrieve_subscription(self, domain_key: str) -> Optional[SubscriptionRecord]:
        _require(domain_key, "domain_key")
        request = self.create_request(f"Backchannel/{domain_key}")
        return self._request_record(request, SubscriptionRecord.from_dict)

    def retrieve_subscription_seats(self, domain_key: str) -> Optional[SubscriptionSeatRecord]:
        _require(domain_key, "domain_key")
        request = self.create_request(f"Backchannel/{domain_key}?seats=true")
        return self._request_record(request, SubscriptionSeatRecord.from_dict)

    def retrieve_subscriptions(self) -> Optional[List[SubscriptionSeatRecord]]:
        request = self.create_request("Backchannel/Subscriptions")
        return self._request_record(request, _list_of(SubscriptionSeatRecord.from_dict))

    def user_removal_notification(self, domain_key: str, user_id: str) -> None:
        """Tell the identity server a user was removed from a subscription.

        The outcome is observable through :attr:`has_errors`,
        :attr:`error_response` and :attr:`last_exception`.
        """
        _require(domain_key, "domain_key")
        _require(user_id, "user_id")
        request = self.create_request(f"Backchannel/{domain_key}/UserRemovalNotification/{user_id}")
        self.request_content(request)

    # ─────────────────────────────────────────────────────────────────────────
    # Organizations
    # ─────────────────────────────────────────────────────────────────────────
    def retrieve_organizations(self) -> Optional[List[OrganizationRecord]]:
        request = self.create_request("Backchannel/Organizations")
        return self._request_record(request, _list_of(OrganizationRecord.from_dict))

    def retrieve_organization(self, organization_id: int) -> Optional[OrganizationRecord]:
        _require(organization_id, "organization_id")
        request = self.create_request(f"Backchannel/Organizations/{organization_id}")
        return self._request_record(request, OrganizationRecord.from_dict)

    def retrieve_all_organization_users(self) -> Optional[List[OrganizationUserRecord]]:
        request = self.create_request("Backchannel/OrganizationUsers")
        return self._request_record(request, _list_of(OrganizationUserRecord.from_dict))

    def retrieve_organization_users(self, organization_id: str) -> Optional[List[OrganizationUserRecord]]:
        _require(organization_id, "organization_id")
        request = self.create_request(f"Backchannel/OrganizationUsers/{organization_id}")
        return self._request_record(request, _list_of(OrganizationUserRecord.from_dict))

    def retrieve_available_organization_users(self, organization_id: str) -> Optional[List[OrganizationUserRecord]]:
        """Users that can still be assigned to the organization."""
        _require(organization_id, "organization_id")
        request = self.create_request(f"Backchannel/OrganizationUsers/{organization_id}/AvailableUsers")
        return self._request_record(request, _list_of(OrganizationUserRecord.from_dict))

    def retrieve_organization_managers(self, organization_id: str) -> Optional[List[UserRecord]]:
        _require(organization_id, "organization_id")
        request = self.create_request(f"Backchannel/OrganizationUsers/{organization_id}/Managers")
        return self._request_record(request, _list_of(UserRecord.from_dict))

    def retrieve_is_manager_for_organizations(self, user_id: str) -> Optional[bool]:
        """Whether the user manages any organization (None if unknown)."""
        _require(user_id, "user_id")
        request = self.create_request(f"Backchannel/OrganizationUsers/{user_id}/IsManager")
        return self._request_record(request, _as_bool)
