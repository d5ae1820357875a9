"""
Email composer for relayed messages.

This module builds the MIME message handed to the SMTP transport: a plain
text body and at most one binary attachment.
"""

import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime, make_msgid
from typing import Any, Optional, Union

from ...common.exceptions import DispatchError

logger = logging.getLogger(__name__)


@dataclass
class MailAttachment:
    """Attachment content ready to be encoded into the message."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_bytes(
        cls,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None,
    ) -> "MailAttachment":
        """
        Create an attachment from bytes.

        Args:
            content: File content as bytes.
            filename: The filename to use.
            content_type: Optional MIME type, guessed from the name if absent.

        Returns:
            MailAttachment instance.
        """
        if content_type is None:
            content_type, _ = mimetypes.guess_type(filename)
            if content_type is None:
                content_type = "application/octet-stream"

        return cls(filename=filename, content=content, content_type=content_type)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without content for serialization)."""
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": len(self.content),
        }


@dataclass
class ComposedEmail:
    """A composed email ready for sending."""

    message_id: str
    mime_message: Union[MIMEMultipart, MIMEText]
    sender: str
    recipients: list[str]
    subject: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def raw_data(self) -> str:
        return self.mime_message.as_string()


class EmailComposer:
    """
    Composes MIME messages for the relay.

    From is always the relay's configured sender address. The address the
    client supplied goes into Reply-To.
    """

    def __init__(
        self,
        default_domain: str = "localhost",
        default_charset: str = "utf-8",
        x_mailer: Optional[str] = None,
    ) -> None:
        self.default_domain = default_domain
        self.default_charset = default_charset
        self.x_mailer = x_mailer or "mailrelay/1.0"

    def generate_message_id(self, domain: Optional[str] = None) -> str:
        """Generate a unique Message-ID of the form <unique-id@domain>."""
        return make_msgid(domain=domain or self.default_domain)

    def _create_attachment_part(self, attachment: MailAttachment) -> MIMEBase:
        maintype, _, subtype = attachment.content_type.partition("/")
        part = MIMEBase(maintype or "application", subtype or "octet-stream")
        part.set_payload(attachment.content)
        encoders.encode_base64(part)
        part.add_header(
            "Content-Disposition",
            "attachment",
            filename=attachment.filename,
        )
        return part

    def compose(
        self,
        sender: str,
        to: str,
        subject: str,
        body_text: str,
        reply_to: Optional[str] = None,
        attachment: Optional[MailAttachment] = None,
        message_id: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> ComposedEmail:
        """
        Compose an email message.

        Args:
            sender: The From address (relay sender address).
            to: The recipient address.
            subject: Subject line, already sanitized.
            body_text: Plain text body, already sanitized.
            reply_to: Optional Reply-To address.
            attachment: Optional single attachment.
            message_id: Optional custom Message-ID.
            date: Optional custom date (defaults to now).

        Returns:
            ComposedEmail instance.

        Raises:
            DispatchError: If the message cannot be built.
        """
        if not to:
            raise DispatchError("A recipient is required")
        if not body_text:
            raise DispatchError("A message body is required")

        if message_id is None:
            sender_domain = sender.split("@")[-1] if "@" in sender else None
            message_id = self.generate_message_id(sender_domain)

        text_part = MIMEText(body_text, "plain", self.default_charset)
        msg: Union[MIMEMultipart, MIMEText]
        if attachment is not None:
            msg = MIMEMultipart("mixed")
            msg.attach(text_part)
            msg.attach(self._create_attachment_part(attachment))
        else:
            msg = text_part

        msg["Message-ID"] = message_id
        msg["Date"] = format_datetime(date or datetime.now(timezone.utc))
        msg["From"] = sender
        msg["To"] = to
        msg["Subject"] = subject
        if reply_to and reply_to != sender:
            msg["Reply-To"] = reply_to
        msg["X-Mailer"] = self.x_mailer

        logger.debug(
            "Composed message %s to %s (attachment=%s)",
            message_id,
            to,
            attachment.filename if attachment else None,
        )

        return ComposedEmail(
            message_id=message_id,
            mime_message=msg,
            sender=sender,
            recipients=[to],
            subject=subject,
        )
