"""
SMTP transport for mailrelay.

This module hands composed messages to an SMTP relay with ``aiosmtplib`` and
verifies relay reachability. It also provisions disposable Ethereal accounts
for diagnostic mode.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import aiosmtplib
import requests

from ...__version__ import __version__
from ...common.exceptions import (
    DispatchError,
    TransportAuthError,
    TransportConnectionError,
)
from .composer import ComposedEmail

logger = logging.getLogger(__name__)

ETHEREAL_ACCOUNT_API = "https://api.nodemailer.com/user"
ETHEREAL_WEB_URL = "https://ethereal.email"

_MSGID_PATTERN = re.compile(r"MSGID=([^\s\]]+)")


@dataclass(frozen=True)
class TransportConfig:
    """Connection parameters for an SMTP relay."""

    host: str
    port: int = 587
    secure: bool = False
    username: Optional[str] = field(default=None, repr=False)
    password: Optional[str] = field(default=None, repr=False)
    sender_address: str = ""
    timeout: int = 30
    verify_ssl: bool = True

    def public_dict(self) -> dict[str, Any]:
        """Connection parameters without credentials."""
        return {
            "host": self.host,
            "port": self.port,
            "secure": self.secure,
            "sender_address": self.sender_address,
        }


@dataclass
class TransportReceipt:
    """What the relay answered for an accepted message."""

    message_id: str
    response: str
    rejected: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class EtherealAccount:
    """A disposable test mailbox; sent mail can be inspected on the web."""

    user: str
    password: str = field(repr=False)
    smtp_host: str = "smtp.ethereal.email"
    smtp_port: int = 587
    smtp_secure: bool = False
    web_url: str = ETHEREAL_WEB_URL

    def transport_config(self, timeout: int = 30) -> TransportConfig:
        return TransportConfig(
            host=self.smtp_host,
            port=self.smtp_port,
            secure=self.smtp_secure,
            username=self.user,
            password=self.password,
            sender_address=self.user,
            timeout=timeout,
        )

    def preview_url(self, response: str) -> Optional[str]:
        """Build the web preview link from the server's DATA response."""
        match = _MSGID_PATTERN.search(response or "")
        if not match:
            return None
        return f"{self.web_url}/message/{match.group(1)}"


def create_test_account(
    session: Optional[requests.Session] = None, timeout: int = 30
) -> EtherealAccount:
    """
    Provision a disposable Ethereal account.

    Raises:
        TransportConnectionError: If the account service cannot be reached,
            refuses the request or returns no credentials.
    """
    http = session or requests.Session()
    try:
        response = http.post(
            ETHEREAL_ACCOUNT_API,
            json={"requestor": "mailrelay", "version": __version__},
            timeout=timeout,
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise TransportConnectionError(
            "Failed to create diagnostic mail account", {"error": str(e)})

    if not isinstance(payload, dict):
        raise TransportConnectionError(
            "Diagnostic mail account service returned an invalid response")

    if payload.get("status") != "success":
        raise TransportConnectionError(
            "Diagnostic mail account service refused the request",
            {"error": payload.get("error")},
        )

    if not payload.get("user") or not payload.get("pass"):
        raise TransportConnectionError(
            "Diagnostic mail account service returned no credentials")

    smtp = payload.get("smtp") or {}
    account = EtherealAccount(
        user=payload["user"],
        password=payload["pass"],
        smtp_host=smtp.get("host", "smtp.ethereal.email"),
        smtp_port=int(smtp.get("port", 587)),
        smtp_secure=bool(smtp.get("secure", False)),
        web_url=payload.get("web", ETHEREAL_WEB_URL),
    )
    logger.info("Created diagnostic mail account %s", account.user)
    return account


class SMTPTransport:
    """
    Sends messages through one SMTP relay.

    A new connection is opened for each call, so a transport instance can be
    shared by concurrent requests running on different event loops.
    """

    def __init__(self, config: TransportConfig, hostname: Optional[str] = None) -> None:
        self.config = config
        self.hostname = hostname

    def _client(self) -> aiosmtplib.SMTP:
        config = self.config
        return aiosmtplib.SMTP(
            hostname=config.host,
            port=config.port,
            local_hostname=self.hostname,
            timeout=config.timeout,
            use_tls=config.secure,
            start_tls=False if config.secure else None,
            validate_certs=config.verify_ssl,
        )

    async def _open(self) -> aiosmtplib.SMTP:
        config = self.config
        smtp = self._client()
        try:
            await smtp.connect()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Failed to connect to relay %s:%d: %s", config.host, config.port, e)
            smtp.close()
            raise TransportConnectionError(
                f"Failed to connect to relay {config.host}",
                {"error": str(e)},
            )

        if config.username and config.password:
            try:
                await smtp.login(config.username, config.password)
            except aiosmtplib.SMTPAuthenticationError as e:
                logger.error("Relay authentication failed: %s", e)
                smtp.close()
                raise TransportAuthError(
                    f"Authentication failed for relay {config.host}",
                    {"error": str(e)},
                )
            except (aiosmtplib.SMTPException, OSError) as e:
                # No AUTH support, or the relay dropped the session mid-login
                logger.error("Relay %s refused login: %s", config.host, e)
                smtp.close()
                raise TransportConnectionError(
                    f"Failed to log in to relay {config.host}",
                    {"error": str(e)},
                )
        return smtp

    async def verify(self) -> None:
        """
        Connect, greet and (when configured) log in, then disconnect.

        Raises:
            TransportConnectionError: If the relay cannot be reached.
            TransportAuthError: If the credentials are refused.
        """
        smtp = await self._open()
        try:
            await smtp.quit()
        except aiosmtplib.SMTPException:
            smtp.close()
        logger.info("Connection verified to %s:%d", self.config.host, self.config.port)

    async def send(self, email: ComposedEmail) -> TransportReceipt:
        """
        Hand a composed message to the relay.

        Raises:
            TransportConnectionError: If the relay drops or cannot be reached.
            TransportAuthError: If the credentials are refused.
            DispatchError: If the relay refuses the message.
        """
        config = self.config
        smtp = await self._open()

        try:
            rejected, response = await smtp.send_message(
                email.mime_message,
                sender=email.sender,
                recipients=email.recipients,
            )
        except (aiosmtplib.SMTPServerDisconnected, OSError) as e:
            smtp.close()
            raise TransportConnectionError(
                f"Relay {config.host} closed the connection",
                {"error": str(e)},
            )
        except aiosmtplib.SMTPException as e:
            smtp.close()
            logger.error("SMTP error with relay %s: %s", config.host, e)
            raise DispatchError(
                f"SMTP error with relay {config.host}",
                {"error": str(e)},
            )

        try:
            await smtp.quit()
        except aiosmtplib.SMTPException:
            smtp.close()

        logger.info(
            "Message %s accepted by %s",
            email.message_id,
            config.host,
        )
        return TransportReceipt(
            message_id=email.message_id,
            response=response,
            rejected={k: str(v) for k, v in (rejected or {}).items()},
        )
