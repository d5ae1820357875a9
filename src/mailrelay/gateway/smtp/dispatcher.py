"""
Mail dispatcher: owns the SMTP transport and turns requests into messages.

The dispatcher holds one immutable ``TransportHandle``. The handle is built
lazily on first use, verified, and replaced as a whole by ``update_config``.
Replacement happens under a lock; sends already in flight keep the handle
they started with.

Transport lifecycle::

    uninitialized -> initializing -> ready
                                  \\-> failed  (retried on next use)
    ready -> ready   (successful update_config)
    ready -> failed  (connection error while sending)
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ...common.config import SMTPSettings
from ...common.exceptions import (
    DiagnosticModeError,
    DispatchError,
    MissingConfigError,
    TransportConnectionError,
)
from ..screening.validator import SendRequest
from .composer import EmailComposer, MailAttachment
from .sender import EtherealAccount, SMTPTransport, TransportConfig, create_test_account

logger = logging.getLogger(__name__)


class TransportMode(str, Enum):
    DIAGNOSTIC = "diagnostic"
    REAL = "real"


class TransportState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class TransportHandle:
    """A verified transport and, in diagnostic mode, its test account."""

    transport: SMTPTransport
    account: Optional[EtherealAccount] = None

    @property
    def config(self) -> TransportConfig:
        return self.transport.config


@dataclass
class DispatchResult:
    """Outcome of a successful send."""

    message_id: str
    success: bool = True
    preview_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "messageId": self.message_id,
            "success": self.success,
        }
        if self.preview_url is not None:
            result["previewUrl"] = self.preview_url
        return result


def transport_config_from_settings(settings: SMTPSettings) -> TransportConfig:
    """Build the real-mode transport config from SMTP settings."""
    if not settings.host:
        raise MissingConfigError("SMTP_HOST")
    if not settings.from_address:
        raise MissingConfigError("SMTP_FROM_ADDRESS")

    return TransportConfig(
        host=settings.host,
        port=settings.port,
        secure=settings.secure,
        username=settings.username,
        password=settings.password.get_secret_value() if settings.password else None,
        sender_address=settings.from_address,
        timeout=settings.timeout,
        verify_ssl=settings.verify_ssl,
    )


class MailDispatcher:
    """
    Composes and sends relayed mail through the configured transport.

    Attributes:
        mode: Diagnostic or real; fixed for the dispatcher's lifetime.
        state: Current transport lifecycle state.
    """

    def __init__(
        self,
        mode: TransportMode,
        config: Optional[TransportConfig] = None,
        composer: Optional[EmailComposer] = None,
        transport_factory: Callable[[TransportConfig], SMTPTransport] = SMTPTransport,
        account_factory: Callable[[], EtherealAccount] = create_test_account,
    ) -> None:
        if mode == TransportMode.REAL and config is None:
            raise MissingConfigError("SMTP_HOST")

        self.mode = mode
        self.composer = composer or EmailComposer()
        self._config = config
        self._transport_factory = transport_factory
        self._account_factory = account_factory
        self._handle: Optional[TransportHandle] = None
        self._state = TransportState.UNINITIALIZED
        self._lock = threading.Lock()

        logger.info(
            "MailDispatcher initialized in %s mode (relay=%s)",
            mode.value,
            config.host if config else "ethereal",
        )

    @classmethod
    def from_settings(cls, settings: SMTPSettings, **kwargs: Any) -> "MailDispatcher":
        if settings.diagnostic:
            return cls(TransportMode.DIAGNOSTIC, **kwargs)
        return cls(
            TransportMode.REAL,
            config=transport_config_from_settings(settings),
            **kwargs,
        )

    @property
    def state(self) -> TransportState:
        return self._state

    def _set_state(self, state: TransportState) -> None:
        if state != self._state:
            logger.info("Transport state %s -> %s", self._state.value, state.value)
        self._state = state

    def _build_handle(self) -> TransportHandle:
        if self.mode == TransportMode.DIAGNOSTIC:
            account = self._account_factory()
            return TransportHandle(
                transport=self._transport_factory(account.transport_config()),
                account=account,
            )
        return TransportHandle(transport=self._transport_factory(self._config))

    async def _ensure_handle(self) -> TransportHandle:
        """Return the current handle, building and verifying one if needed."""
        with self._lock:
            handle = self._handle
            if handle is None:
                self._set_state(TransportState.INITIALIZING)

        if handle is not None:
            return handle

        try:
            loop = asyncio.get_running_loop()
            handle = await loop.run_in_executor(None, self._build_handle)
            await handle.transport.verify()
        except Exception:
            self._set_state(TransportState.FAILED)
            raise

        with self._lock:
            if self._handle is None:
                self._handle = handle
            self._set_state(TransportState.READY)
            return self._handle

    def _invalidate(self, handle: TransportHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None
            self._set_state(TransportState.FAILED)

    async def send(
        self,
        request: SendRequest,
        attachment_content: Optional[bytes] = None,
    ) -> DispatchResult:
        """
        Compose and send one message.

        Args:
            request: Validated request.
            attachment_content: Bytes of the attachment as verified by the
                final gate check. Required when the request has an attachment.

        Returns:
            DispatchResult with the Message-ID and, in diagnostic mode, a
            preview link.

        Raises:
            DispatchError: If composing or sending fails.
        """
        handle = await self._ensure_handle()

        attachment = None
        if request.attachment is not None:
            if attachment_content is None:
                raise DispatchError("Attachment content missing")
            attachment = MailAttachment.from_bytes(
                attachment_content,
                filename=request.attachment.original_name,
                content_type=request.attachment.declared_mime_type,
            )

        email = self.composer.compose(
            sender=handle.config.sender_address,
            to=request.recipient,
            subject=request.subject,
            body_text=request.body,
            reply_to=request.sender,
            attachment=attachment,
        )

        try:
            receipt = await handle.transport.send(email)
        except TransportConnectionError:
            self._invalidate(handle)
            raise

        preview_url = None
        if handle.account is not None:
            preview_url = handle.account.preview_url(receipt.response)

        return DispatchResult(
            message_id=receipt.message_id,
            success=True,
            preview_url=preview_url,
        )

    async def send_alert(
        self, subject: str, body: str, recipient: Optional[str] = None
    ) -> bool:
        """
        Send an operator notification. Never raises.

        Args:
            subject: Alert subject.
            body: Alert text.
            recipient: Operator address; defaults to the sender address.

        Returns:
            True if the relay accepted the alert.
        """
        try:
            handle = await self._ensure_handle()
            sender = handle.config.sender_address
            email = self.composer.compose(
                sender=sender,
                to=recipient or sender,
                subject=subject,
                body_text=body,
            )
            await handle.transport.send(email)
        except DispatchError as e:
            logger.error("Failed to send operator alert '%s': %s", subject, e)
            return False
        except Exception:
            logger.exception("Unexpected error sending operator alert '%s'", subject)
            return False

        logger.info("Operator alert '%s' sent to %s", subject, recipient or sender)
        return True

    async def get_status(self) -> dict[str, Any]:
        """
        Verify that the relay answers.

        Raises:
            DispatchError: If the relay is unreachable or refuses login.
        """
        handle = await self._ensure_handle()
        try:
            await handle.transport.verify()
        except TransportConnectionError:
            self._invalidate(handle)
            raise

        return {
            "status": "operational",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "mode": self.mode.value,
        }

    def get_config(self) -> dict[str, Any]:
        """Non-secret connection parameters of the current transport."""
        with self._lock:
            handle = self._handle
            config = handle.config if handle is not None else self._config

        result: dict[str, Any] = {"mode": self.mode.value}
        if config is not None:
            result.update(config.public_dict())
        else:
            result.update({
                "host": None,
                "port": None,
                "secure": None,
                "sender_address": None,
            })
        return result

    async def update_config(self, config: TransportConfig) -> dict[str, Any]:
        """
        Replace the real-mode transport after verifying the new relay.

        The current transport stays in place if verification fails.

        Raises:
            DiagnosticModeError: Always, in diagnostic mode.
            DispatchError: If the new relay cannot be verified.
        """
        if self.mode == TransportMode.DIAGNOSTIC:
            raise DiagnosticModeError("update_config")

        candidate = TransportHandle(transport=self._transport_factory(config))
        await candidate.transport.verify()

        with self._lock:
            self._config = config
            self._handle = candidate
            self._set_state(TransportState.READY)

        logger.info(
            "Transport configuration replaced",
            extra={"host": config.host, "port": config.port},
        )
        return self.get_config()

    @property
    def current_config(self) -> Optional[TransportConfig]:
        with self._lock:
            return self._config
