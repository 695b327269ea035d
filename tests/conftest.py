"""Pytest shared fixtures for backchannel client tests."""
import json
import pathlib
import sys
from typing import Callable, Dict, List, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest
import requests

from identity_backchannel.core.backchannel import IdentityClient

AUTHORITY_URL = "https://id.example.com/"
RESOURCE_URL = "https://api.example.com/"
CLIENT_SECRET = "s3cret"
TOKEN_ENDPOINT = "https://id.example.com/connect/token"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_real_http(monkeypatch):
    """Prevent unit tests from reaching the network through a real session."""

    def _unexpected(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _unexpected)


# ─────────────────────────────────────────────────────────────────────────────
# Backchannel REST stubs
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    def __init__(self, payload=None, status_code: int = 200, text: Optional[str] = None, url: str = ""):
        self.status_code = status_code
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.url = url


class StubSession:
    """Stand-in for requests.Session that replays queued outcomes.

    Each queued item is a StubResponse to return or an exception to raise.
    Every call is recorded in ``calls``.
    """

    def __init__(self, *outcomes):
        self.outcomes: List = list(outcomes)
        self.calls: List[Dict] = []
        self.trust_env = True
        self.closed = False

    def queue(self, *outcomes) -> "StubSession":
        self.outcomes.extend(outcomes)
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.outcomes:
            raise AssertionError(f"No stub outcome queued for {method} {url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        outcome.url = outcome.url or url
        return outcome

    def close(self):
        self.closed = True

    @property
    def last_call(self) -> Dict:
        return self.calls[-1]


@pytest.fixture()
def stub_session():
    return StubSession()


# ─────────────────────────────────────────────────────────────────────────────
# Token server stubs
# ─────────────────────────────────────────────────────────────────────────────
def _response(status_code: int, payload) -> httpx.Response:
    if isinstance(payload, str):
        return httpx.Response(status_code, content=payload.encode("utf-8"))
    return httpx.Response(status_code, json=payload)


class TokenServer:
    """httpx MockTransport handler emulating discovery and token endpoints."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.discovery_status = 200
        self.discovery_payload = {"issuer": "https://id.example.com", "token_endpoint": "https://id.example.com/oauth/token"}
        self.token_status = 200
        self.token_payload = {"access_token": "test-token", "token_type": "Bearer", "expires_in": 3600, "scope": "vidsapi"}
        self.fail_discovery_with: Optional[Exception] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/.well-known/openid-configuration"):
            if self.fail_discovery_with is not None:
                raise self.fail_discovery_with
            return _response(self.discovery_status, self.discovery_payload)
        return _response(self.token_status, self.token_payload)

    @property
    def token_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith("/.well-known/openid-configuration")]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture()
def token_server():
    return TokenServer()


@pytest.fixture()
def make_client(stub_session, token_server) -> Callable[..., IdentityClient]:
    """Factory for clients wired to the REST and token stubs."""

    def _make(**overrides) -> IdentityClient:
        kwargs = dict(
            authority_url=AUTHORITY_URL,
            resource_url=RESOURCE_URL,
            client_secret=CLIENT_SECRET,
            client_id=None,
            use_discovery=False,
            session=stub_session,
            token_transport=token_server.transport(),
        )
        kwargs.update(overrides)
        return IdentityClient(**kwargs)

    return _make


@pytest.fixture()
def client(make_client):
    return make_client()
