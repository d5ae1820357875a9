"""
Tests for MIME message composition.
"""

import base64
from datetime import datetime, timezone

import pytest

from mailrelay.common.exceptions import DispatchError
from mailrelay.gateway.smtp.composer import EmailComposer, MailAttachment

from conftest import PDF_BYTES, SENDER_ADDRESS


@pytest.fixture
def composer() -> EmailComposer:
    return EmailComposer()


def test_plain_message_headers(composer):
    email = composer.compose(
        sender=SENDER_ADDRESS,
        to="bob@example.org",
        subject="Hello there",
        body_text="This is a test message.",
        reply_to="alice@example.com",
        date=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )
    msg = email.mime_message

    assert msg["From"] == SENDER_ADDRESS
    assert msg["To"] == "bob@example.org"
    assert msg["Reply-To"] == "alice@example.com"
    assert msg["Subject"] == "Hello there"
    assert msg["Date"] == "Tue, 02 Jan 2024 03:04:05 +0000"
    assert msg["X-Mailer"] == "mailrelay/1.0"
    assert msg.get_content_type() == "text/plain"
    assert email.recipients == ["bob@example.org"]
    assert email.sender == SENDER_ADDRESS


def test_message_id_uses_sender_domain(composer):
    email = composer.compose(
        sender=SENDER_ADDRESS,
        to="bob@example.org",
        subject="Hello there",
        body_text="This is a test message.",
    )

    assert email.message_id.startswith("<")
    assert email.message_id.endswith("@example.com>")
    assert email.mime_message["Message-ID"] == email.message_id


def test_reply_to_omitted_when_same_as_sender(composer):
    email = composer.compose(
        sender=SENDER_ADDRESS,
        to="bob@example.org",
        subject="Hello there",
        body_text="This is a test message.",
        reply_to=SENDER_ADDRESS,
    )

    assert email.mime_message["Reply-To"] is None


def test_attachment_is_base64_part(composer):
    attachment = MailAttachment.from_bytes(
        PDF_BYTES, filename="report.pdf", content_type="application/pdf")

    email = composer.compose(
        sender=SENDER_ADDRESS,
        to="bob@example.org",
        subject="Report",
        body_text="Please find the report attached.",
        attachment=attachment,
    )
    msg = email.mime_message

    assert msg.get_content_type() == "multipart/mixed"
    text_part, file_part = msg.get_payload()
    assert text_part.get_content_type() == "text/plain"
    assert file_part.get_content_type() == "application/pdf"
    assert file_part.get_filename() == "report.pdf"
    assert file_part["Content-Transfer-Encoding"] == "base64"
    assert base64.b64decode(file_part.get_payload()) == PDF_BYTES


def test_content_type_guessed_from_filename():
    attachment = MailAttachment.from_bytes(b"\x89PNG", filename="image.png")

    assert attachment.content_type == "image/png"
    assert attachment.to_dict() == {
        "filename": "image.png",
        "content_type": "image/png",
        "size": 4,
    }


def test_missing_recipient_is_rejected(composer):
    with pytest.raises(DispatchError):
        composer.compose(
            sender=SENDER_ADDRESS,
            to="",
            subject="Hello there",
            body_text="This is a test message.",
        )


def test_raw_data_is_serialized_message(composer):
    email = composer.compose(
        sender=SENDER_ADDRESS,
        to="bob@example.org",
        subject="Hello there",
        body_text="This is a test message.",
    )

    assert "Subject: Hello there" in email.raw_data
