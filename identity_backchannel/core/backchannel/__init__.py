"""Identity server backchannel client library.

Architecture:
- client.py: IdentityClient with authentication, request building and error classification
- auth.py: OAuth2 discovery and client credentials exchange
- errors.py: Error model shared with the identity server
- models.py: Record models returned by the API
- results.py: Per-request outcome types
- exceptions.py: Typed exceptions for caller misuse

Usage:
    import asyncio
    from identity_backchannel.core.backchannel import IdentityClient

    client = IdentityClient("https://id.example.com", "https://api.example.com", "secret")
    asyncio.run(client.authenticate())
    organizations = client.retrieve_organizations()
"""
from .auth import (
    AuthToken,
    DiscoveryDocument,
    default_token_endpoint,
    discovery_url,
    fetch_discovery_document,
    request_client_credentials_token,
)
from .client import (
    IdentityClient,
    BackchannelRequest,
    BearerAuth,
    DEFAULT_CLIENT_ID,
    DEFAULT_SCOPE,
)
from .errors import (
    ErrorCategory,
    ErrorType,
    ErrorEntry,
    ErrorResponse,
)
from .exceptions import (
    BackchannelError,
    InvalidRequestError,
    ErrorModelDecodeError,
)
from .models import (
    ApplicationSubscriptionLevel,
    UserType,
    OrganizationRecord,
    OrganizationUserRecord,
    SubscriptionRecord,
    SubscriptionSeatRecord,
    UserRecord,
)
from .results import (
    RequestResult,
    Success,
    ApplicationError,
    TransportFault,
)

__all__ = [
    # Client
    "IdentityClient",
    "BackchannelRequest",
    "BearerAuth",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_SCOPE",

    # Authentication
    "AuthToken",
    "DiscoveryDocument",
    "default_token_endpoint",
    "discovery_url",
    "fetch_discovery_document",
    "request_client_credentials_token",

    # Error model
    "ErrorCategory",
    "ErrorType",
    "ErrorEntry",
    "ErrorResponse",

    # Exceptions
    "BackchannelError",
    "InvalidRequestError",
    "ErrorModelDecodeError",

    # Records
    "ApplicationSubscriptionLevel",
    "UserType",
    "OrganizationRecord",
    "OrganizationUserRecord",
    "SubscriptionRecord",
    "SubscriptionSeatRecord",
    "UserRecord",

    # Results
    "RequestResult",
    "Success",
    "ApplicationError",
    "TransportFault",
]
