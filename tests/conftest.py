"""Shared fixtures for the contact relay test suite."""

import json
from typing import List, Optional

import httpx
import pytest

from core.credential_vault import CredentialVault, Credentials, InstallationKeyMaterial
from core.exceptions import FallbackFailed
from core.rate_limiter import InMemoryCounterStore, RateLimiter
from services.contact_service import ContactService
from services.fallback_transport import FallbackTransport
from services.settings_store import SettingsStore


class FakeClock:
    """Monotonic clock the tests can move forward"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GraphStub:
    """
    Mock transport standing in for the identity provider and Graph.

    Records every request so tests can count outbound calls.
    """

    def __init__(self, token_status: int = 200, token_body: Optional[dict] = None,
                 send_status: int = 202, send_body: Optional[dict] = None,
                 token_exc: Optional[Exception] = None, send_exc: Optional[Exception] = None):
        self.token_status = token_status
        self.token_body = token_body if token_body is not None else {
            "access_token": "stub-access-token", "token_type": "Bearer", "expires_in": 3599,
        }
        self.send_status = send_status
        self.send_body = send_body
        self.token_exc = token_exc
        self.send_exc = send_exc
        self.requests: List[httpx.Request] = []

    @property
    def token_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/oauth2/v2.0/token")]

    @property
    def send_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/sendMail")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/oauth2/v2.0/token"):
            if self.token_exc is not None:
                raise self.token_exc
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path.endswith("/sendMail"):
            if self.send_exc is not None:
                raise self.send_exc
            if self.send_body is None:
                return httpx.Response(self.send_status)
            return httpx.Response(self.send_status, json=self.send_body)
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class RecordingFallback(FallbackTransport):
    """Fallback transport that remembers what it was asked to send"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def send(self, to, subject, html_body, reply_to):
        self.calls.append({"to": to, "subject": subject, "html_body": html_body, "reply_to": reply_to})
        if self.fail:
            raise FallbackFailed("relay refused the message")


def sent_message(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def key_material():
    return InstallationKeyMaterial("test-auth-key", "test-secure-auth-key")


@pytest.fixture
def credentials():
    return Credentials(
        tenant_id="11111111-2222-3333-4444-555555555555",
        client_id="aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee",
        client_secret="super-secret-value",
        sender_email="noreply@example.org",
    )


@pytest.fixture
def vault(tmp_path, key_material):
    return CredentialVault(tmp_path / "config", key_material)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def graph():
    return GraphStub()


@pytest.fixture
def fallback():
    return RecordingFallback()


@pytest.fixture
def service_factory(tmp_path, key_material, clock):
    """Build a ContactService against temp storage and a stubbed Graph"""
    created = []

    def build(graph: GraphStub, fallback: FallbackTransport = None, token_verifier=None,
              admin_email: str = "owner@example.org", limit: int = 5):
        kwargs = {}
        if token_verifier is not None:
            kwargs["token_verifier"] = token_verifier
        service = ContactService(
            vault=CredentialVault(tmp_path / "config", key_material),
            settings_store=SettingsStore(tmp_path / "settings.json"),
            rate_limiter=RateLimiter(InMemoryCounterStore(clock=clock), limit=limit, window_seconds=300),
            http_client=graph.client(),
            fallback=fallback or RecordingFallback(fail=True),
            site_name="Test Site",
            admin_email=admin_email,
            timeout=5,
            **kwargs,
        )
        created.append(service)
        return service

    yield build
    for service in created:
        service.close()
