import asyncio
import base64
from urllib.parse import parse_qs

import httpx

from identity_backchannel.core.backchannel import (
    ErrorCategory,
    ErrorType,
    default_token_endpoint,
    discovery_url,
    fetch_discovery_document,
    request_client_credentials_token,
)

TOKEN_URL = "https://id.example.com/connect/token"


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def test_endpoint_helpers_append_paths():
    assert default_token_endpoint("https://id.example.com/") == "https://id.example.com/connect/token"
    assert default_token_endpoint("https://id.example.com") == "https://id.example.com/connect/token"
    assert default_token_endpoint("https://id.example.com/realm/") == "https://id.example.com/realm/connect/token"
    assert discovery_url("https://id.example.com/") == "https://id.example.com/.well-known/openid-configuration"


def test_discovery_returns_token_endpoint(token_server):
    document = asyncio.run(fetch_discovery_document("https://id.example.com/", transport=token_server.transport()))
    assert document.is_error is False
    assert document.token_endpoint == "https://id.example.com/oauth/token"
    assert document.issuer == "https://id.example.com"
    assert str(token_server.requests[0].url) == "https://id.example.com/.well-known/openid-configuration"


def test_discovery_http_error_is_reported(token_server):
    token_server.discovery_status = 404
    token_server.discovery_payload = "missing"
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))
    assert document.is_error is True
    assert "404" in document.error


def test_discovery_network_error_is_reported(token_server):
    token_server.fail_discovery_with = httpx.ConnectError("connection refused")
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))
    assert document.is_error is True
    assert "connection refused" in document.error


def test_discovery_network_error_carries_error_model(token_server):
    token_server.fail_discovery_with = httpx.ConnectError("connection refused")
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))

    assert isinstance(document.exception, httpx.ConnectError)
    errors = document.to_error_response()
    [entry] = errors.messages
    assert entry.error_category is ErrorCategory.GENERAL
    assert entry.error_type is ErrorType.CRITICAL
    assert "connection refused" in entry.message
    assert "ConnectError" in entry.stack_trace
    assert errors.has_unhandled_exception is True


def test_discovery_status_error_model_has_no_stack(token_server):
    token_server.discovery_status = 500
    token_server.discovery_payload = "down"
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))

    errors = document.to_error_response()
    [entry] = errors.messages
    assert entry.error_type is ErrorType.CRITICAL
    assert entry.stack_trace == ""
    assert errors.has_unhandled_exception is False


def test_readable_discovery_has_empty_error_model(token_server):
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))
    assert document.to_error_response().messages == []


def test_discovery_without_token_endpoint_is_error(token_server):
    token_server.discovery_payload = {"issuer": "https://id.example.com"}
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))
    assert document.is_error is True
    assert document.token_endpoint is None
    assert document.issuer == "https://id.example.com"


def test_discovery_invalid_json_is_error(token_server):
    token_server.discovery_payload = "<html>"
    document = asyncio.run(fetch_discovery_document("https://id.example.com", transport=token_server.transport()))
    assert document.is_error is True


def test_client_credentials_success(token_server):
    token = asyncio.run(
        request_client_credentials_token(
            TOKEN_URL, "backchannel", "s3cret", scope="vidsapi", transport=token_server.transport()
        )
    )
    assert token.is_error is False
    assert token.access_token == "test-token"
    assert token.expires_in == 3600

    request = token_server.token_requests[0]
    assert str(request.url) == TOKEN_URL
    assert request.method == "POST"
    form = _form(request)
    assert form["grant_type"] == "client_credentials"
    assert form["scope"] == "vidsapi"
    expected = base64.b64encode(b"backchannel:s3cret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


def test_client_credentials_protocol_error(token_server):
    token_server.token_status = 400
    token_server.token_payload = {"error": "invalid_client", "error_description": "Unknown client"}
    token = asyncio.run(
        request_client_credentials_token(TOKEN_URL, "backchannel", "wrong", transport=token_server.transport())
    )
    assert token.is_error is True
    assert token.error == "invalid_client"
    assert token.error_description == "Unknown client"
    assert token.access_token == ""


def test_client_credentials_server_error(token_server):
    token_server.token_status = 503
    token_server.token_payload = "unavailable"
    token = asyncio.run(
        request_client_credentials_token(TOKEN_URL, "backchannel", "s3cret", transport=token_server.transport())
    )
    assert token.is_error is True
    assert token.error


def test_client_credentials_malformed_response(token_server):
    token_server.token_payload = "not json"
    token = asyncio.run(
        request_client_credentials_token(TOKEN_URL, "backchannel", "s3cret", transport=token_server.transport())
    )
    assert token.is_error is True
    assert "Invalid token response" in token.error


def test_client_credentials_missing_access_token(token_server):
    token_server.token_payload = {"token_type": "Bearer"}
    token = asyncio.run(
        request_client_credentials_token(TOKEN_URL, "backchannel", "s3cret", transport=token_server.transport())
    )
    assert token.is_error is True


def test_token_repr_hides_access_token(token_server):
    token = asyncio.run(
        request_client_credentials_token(TOKEN_URL, "backchannel", "s3cret", transport=token_server.transport())
    )
    assert "test-token" not in repr(token)
