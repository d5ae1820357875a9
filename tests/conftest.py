"""
Pytest fixtures for mailrelay tests.

This module provides settings, fake SMTP transports, stub scanners and a
ready Flask test client with an anti-forgery token.
"""

import io
import os
import sys
from typing import Any, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from mailrelay.common.config import ScanSettings, Settings, SMTPSettings  # noqa: E402
from mailrelay.common.exceptions import TransportConnectionError  # noqa: E402
from mailrelay.gateway.app import create_app  # noqa: E402
from mailrelay.gateway.config import GatewaySettings  # noqa: E402
from mailrelay.gateway.screening.scanner import ScanVerdict  # noqa: E402
from mailrelay.gateway.smtp.composer import ComposedEmail  # noqa: E402
from mailrelay.gateway.smtp.dispatcher import MailDispatcher, TransportMode  # noqa: E402
from mailrelay.gateway.smtp.sender import (  # noqa: E402
    EtherealAccount,
    TransportConfig,
    TransportReceipt,
)

API_KEY = "test-api-key-0123456789abcdef"
SENDER_ADDRESS = "relay@example.com"

VALID_FIELDS = {
    "from": "alice@example.com",
    "to": "bob@example.org",
    "subject": "Hello there",
    "text": "This is a test message.",
}

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"


# =============================================================================
# Fakes
# =============================================================================


class FakeTransport:
    """Stands in for ``SMTPTransport``; records what it was asked to send."""

    def __init__(self, config: TransportConfig, factory: "FakeTransportFactory") -> None:
        self.config = config
        self.factory = factory

    async def verify(self) -> None:
        self.factory.verify_calls += 1
        if self.factory.verify_error is not None:
            raise self.factory.verify_error
        if self.factory.fail_verify:
            raise TransportConnectionError(f"Failed to connect to relay {self.config.host}")

    async def send(self, email: ComposedEmail) -> TransportReceipt:
        if self.factory.fail_send is not None:
            raise self.factory.fail_send
        self.factory.sent.append(email)
        return TransportReceipt(
            message_id=email.message_id,
            response=self.factory.response,
        )


class FakeTransportFactory:
    """Creates ``FakeTransport`` instances and shares failure switches."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.sent: list[ComposedEmail] = []
        self.verify_calls = 0
        self.fail_verify = False
        self.verify_error: Optional[Exception] = None
        self.fail_send: Optional[Exception] = None
        self.response = "250 2.0.0 Ok: queued"

    def __call__(self, config: TransportConfig) -> FakeTransport:
        transport = FakeTransport(config, self)
        self.transports.append(transport)
        return transport


class StubScanner:
    """Returns a fixed verdict and counts scans."""

    def __init__(self, verdict: ScanVerdict) -> None:
        self.verdict = verdict
        self.calls: list[tuple[str, int]] = []

    async def scan(self, filename: str, content: bytes) -> ScanVerdict:
        self.calls.append((filename, len(content)))
        return self.verdict


def make_ethereal_account() -> EtherealAccount:
    return EtherealAccount(user="tester@ethereal.email", password="secret")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def upload_dir(tmp_path):
    """Directory used for in-flight uploads."""
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def transport_config() -> TransportConfig:
    return TransportConfig(
        host="smtp.example.com",
        port=587,
        secure=False,
        username="relay-user",
        password="relay-password",
        sender_address=SENDER_ADDRESS,
    )


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def dispatcher(transport_config, transport_factory) -> MailDispatcher:
    """A real-mode dispatcher backed by fake transports."""
    return MailDispatcher(
        TransportMode.REAL,
        config=transport_config,
        transport_factory=transport_factory,
    )


@pytest.fixture
def diagnostic_dispatcher(transport_factory) -> MailDispatcher:
    """A diagnostic-mode dispatcher with a canned Ethereal account."""
    return MailDispatcher(
        TransportMode.DIAGNOSTIC,
        transport_factory=transport_factory,
        account_factory=make_ethereal_account,
    )


@pytest.fixture
def settings(upload_dir) -> Settings:
    return Settings(
        environment="test",
        upload_dir=str(upload_dir),
        smtp=SMTPSettings(host="smtp.example.com", from_address=SENDER_ADDRESS),
        scan=ScanSettings(enabled=False),
    )


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        api_key=API_KEY,
        csrf_enabled=True,
        cookie_secure=False,
        rate_limit_enabled=True,
        log_requests=False,
    )


@pytest.fixture
def app_factory(settings, gateway_settings, dispatcher):
    """Build an app; keyword arguments override the default components."""

    def factory(**overrides: Any):
        kwargs = {
            "settings": settings,
            "gateway_settings": gateway_settings,
            "dispatcher": dispatcher,
        }
        kwargs.update(overrides)
        return create_app(**kwargs)

    return factory


@pytest.fixture
def app(app_factory):
    return app_factory()


@pytest.fixture
def client(app):
    return app.test_client()


def api_headers(csrf_token: Optional[str] = None) -> dict[str, str]:
    headers = {"X-API-Key": API_KEY}
    if csrf_token is not None:
        headers["X-CSRF-Token"] = csrf_token
    return headers


def fetch_csrf_token(client) -> str:
    """Request a token; the test client keeps the cookie."""
    response = client.get("/api/csrf-token", headers=api_headers())
    assert response.status_code == 200
    return response.get_json()["token"]


def post_send(
    client,
    fields: Optional[dict[str, Any]] = None,
    file: Optional[tuple[bytes, str, str]] = None,
    csrf_token: Optional[str] = None,
):
    """POST a multipart send request, optionally with one file."""
    if csrf_token is None:
        csrf_token = fetch_csrf_token(client)

    data: dict[str, Any] = dict(VALID_FIELDS if fields is None else fields)
    if file is not None:
        content, filename, mime_type = file
        data["file"] = (io.BytesIO(content), filename, mime_type)

    return client.post(
        "/api/mail/send",
        data=data,
        headers=api_headers(csrf_token),
        content_type="multipart/form-data",
    )
