"""
Tests for the aiosmtplib transport and Ethereal account provisioning.
"""

from typing import Any, Optional

import aiosmtplib
import pytest

from mailrelay.common.exceptions import TransportAuthError, TransportConnectionError
from mailrelay.gateway.smtp.sender import SMTPTransport, TransportConfig, create_test_account

from conftest import SENDER_ADDRESS


class FakeSMTP:
    """Stands in for ``aiosmtplib.SMTP``; fails at the configured step."""

    def __init__(
        self,
        connect_error: Optional[Exception] = None,
        login_error: Optional[Exception] = None,
    ) -> None:
        self.connect_error = connect_error
        self.login_error = login_error
        self.logins: list[tuple[str, str]] = []
        self.closed = False
        self.quit_called = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error

    async def login(self, username: str, password: str) -> None:
        self.logins.append((username, password))
        if self.login_error is not None:
            raise self.login_error

    async def quit(self) -> None:
        self.quit_called = True

    def close(self) -> None:
        self.closed = True


class StubbedTransport(SMTPTransport):
    def __init__(self, config: TransportConfig, smtp: FakeSMTP) -> None:
        super().__init__(config)
        self.smtp = smtp

    def _client(self) -> Any:
        return self.smtp


@pytest.fixture
def relay_config() -> TransportConfig:
    return TransportConfig(
        host="smtp.example.com",
        username="relay-user",
        password="relay-password",
        sender_address=SENDER_ADDRESS,
    )


class TestVerify:
    async def test_verify_logs_in_and_quits(self, relay_config):
        smtp = FakeSMTP()

        await StubbedTransport(relay_config, smtp).verify()

        assert smtp.logins == [("relay-user", "relay-password")]
        assert smtp.quit_called is True

    async def test_relay_without_auth_support(self, relay_config):
        smtp = FakeSMTP(login_error=aiosmtplib.SMTPException(
            "The SMTP AUTH extension is not supported by this server."))

        with pytest.raises(TransportConnectionError):
            await StubbedTransport(relay_config, smtp).verify()

        assert smtp.closed is True

    async def test_disconnect_during_login(self, relay_config):
        smtp = FakeSMTP(login_error=aiosmtplib.SMTPServerDisconnected("gone"))

        with pytest.raises(TransportConnectionError):
            await StubbedTransport(relay_config, smtp).verify()

    async def test_refused_credentials(self, relay_config):
        smtp = FakeSMTP(login_error=aiosmtplib.SMTPAuthenticationError(
            535, "5.7.8 Authentication credentials invalid"))

        with pytest.raises(TransportAuthError):
            await StubbedTransport(relay_config, smtp).verify()

    async def test_bad_greeting(self, relay_config):
        smtp = FakeSMTP(connect_error=aiosmtplib.SMTPResponseException(
            554, "5.3.2 Service unavailable"))

        with pytest.raises(TransportConnectionError):
            await StubbedTransport(relay_config, smtp).verify()

        assert smtp.logins == []

    async def test_no_login_without_credentials(self):
        smtp = FakeSMTP()
        config = TransportConfig(host="smtp.example.com", sender_address=SENDER_ADDRESS)

        await StubbedTransport(config, smtp).verify()

        assert smtp.logins == []


class FakeResponse:
    def __init__(self, payload: Any) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        pass

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, payload: Any) -> None:
        self.payload = payload

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return FakeResponse(self.payload)


class TestCreateTestAccount:
    def test_account_from_payload(self):
        account = create_test_account(FakeSession({
            "status": "success",
            "user": "tester@ethereal.email",
            "pass": "secret",
            "smtp": {"host": "smtp.ethereal.email", "port": 587, "secure": False},
            "web": "https://ethereal.email",
        }))

        assert account.user == "tester@ethereal.email"
        assert account.transport_config().username == "tester@ethereal.email"

    def test_refused_request(self):
        with pytest.raises(TransportConnectionError):
            create_test_account(FakeSession({"status": "error", "error": "busy"}))

    def test_payload_without_credentials(self):
        with pytest.raises(TransportConnectionError):
            create_test_account(FakeSession({"status": "success", "smtp": {}}))

    def test_payload_not_an_object(self):
        with pytest.raises(TransportConnectionError):
            create_test_account(FakeSession(["success"]))
