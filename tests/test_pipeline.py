"""
Tests for the send pipeline: screening order, scan verdict handling and
temporary file cleanup.
"""

import io

import pytest
from werkzeug.datastructures import FileStorage

from mailrelay.common.exceptions import (
    AttachmentRejectedError,
    DispatchError,
    ScanError,
    ScanQuotaExceededError,
    ScanTimeoutError,
    ValidationError,
)
from mailrelay.gateway.pipeline import QUOTA_ALERT_SUBJECT, SendPipeline
from mailrelay.gateway.screening.attachments import UploadStore
from mailrelay.gateway.screening.scanner import ScanVerdict

from conftest import PDF_BYTES, SENDER_ADDRESS, VALID_FIELDS, StubScanner


@pytest.fixture
def store(upload_dir) -> UploadStore:
    return UploadStore(upload_dir)


def make_pipeline(dispatcher, store, scanner=None, **kwargs) -> SendPipeline:
    return SendPipeline(dispatcher=dispatcher, store=store, scanner=scanner, **kwargs)


def stored(store, content=PDF_BYTES, filename="doc.pdf", mime_type="application/pdf"):
    return store.save(FileStorage(
        stream=io.BytesIO(content),
        filename=filename,
        content_type=mime_type,
    ))


async def test_send_without_attachment(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store)

    result = await pipeline.process(VALID_FIELDS)

    assert result.message_id
    assert len(transport_factory.sent) == 1


async def test_send_with_attachment_cleans_up(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.clean()))

    await pipeline.process(VALID_FIELDS, stored(store))

    [email] = transport_factory.sent
    assert email.mime_message.get_content_type() == "multipart/mixed"
    assert store.pending() == []


async def test_short_subject_is_rejected_before_dispatch(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store)

    with pytest.raises(ValidationError):
        await pipeline.process(dict(VALID_FIELDS, subject="Hi"))

    assert transport_factory.sent == []


async def test_validation_failure_deletes_attachment(dispatcher, store):
    pipeline = make_pipeline(dispatcher, store)

    with pytest.raises(ValidationError):
        await pipeline.process(dict(VALID_FIELDS, to="nobody"), stored(store))

    assert store.pending() == []


async def test_repeated_invalid_requests_leave_no_files(dispatcher, store):
    pipeline = make_pipeline(dispatcher, store)

    for _ in range(2):
        with pytest.raises(ValidationError):
            await pipeline.process(dict(VALID_FIELDS, subject="Hi"), stored(store))

    assert store.pending() == []


async def test_disallowed_type_is_not_scanned(dispatcher, store):
    scanner = StubScanner(ScanVerdict.clean())
    pipeline = make_pipeline(dispatcher, store, scanner)

    with pytest.raises(AttachmentRejectedError):
        await pipeline.process(VALID_FIELDS, stored(store, b"text", "notes.txt", "text/plain"))

    assert scanner.calls == []
    assert store.pending() == []


async def test_malicious_file_is_rejected_before_send(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.malicious(5)))

    with pytest.raises(AttachmentRejectedError) as exc_info:
        await pipeline.process(VALID_FIELDS, stored(store))

    assert exc_info.value.reason == "malicious"
    assert exc_info.value.http_status == 400
    assert transport_factory.sent == []
    assert store.pending() == []


async def test_quota_exceeded_sends_one_alert(dispatcher, store, transport_factory):
    pipeline = make_pipeline(
        dispatcher, store,
        StubScanner(ScanVerdict.quota_exceeded()),
        alert_recipient="ops@example.com",
    )

    with pytest.raises(ScanQuotaExceededError) as exc_info:
        await pipeline.process(VALID_FIELDS, stored(store))

    assert exc_info.value.http_status == 429
    [alert] = transport_factory.sent
    assert alert.subject == QUOTA_ALERT_SUBJECT
    assert alert.recipients == ["ops@example.com"]
    assert store.pending() == []


async def test_quota_exceeded_when_alert_fails(dispatcher, store, transport_factory):
    transport_factory.fail_verify = True
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.quota_exceeded()))

    with pytest.raises(ScanQuotaExceededError):
        await pipeline.process(VALID_FIELDS, stored(store))

    # One attempt to bring up the transport for the alert, no retries
    assert transport_factory.verify_calls == 1
    assert transport_factory.sent == []


async def test_scan_error_fails_request(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.error("503 error")))

    with pytest.raises(ScanError) as exc_info:
        await pipeline.process(VALID_FIELDS, stored(store))

    assert exc_info.value.http_status == 500
    assert transport_factory.sent == []


async def test_scan_timeout_blocks_by_default(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.timed_out(10)))

    with pytest.raises(ScanTimeoutError):
        await pipeline.process(VALID_FIELDS, stored(store))

    assert transport_factory.sent == []
    assert store.pending() == []


async def test_scan_timeout_allowed_by_policy(dispatcher, store, transport_factory):
    pipeline = make_pipeline(
        dispatcher, store,
        StubScanner(ScanVerdict.timed_out(10)),
        block_on_scan_timeout=False,
    )

    await pipeline.process(VALID_FIELDS, stored(store))

    assert len(transport_factory.sent) == 1


async def test_transport_failure_deletes_attachment(dispatcher, store, transport_factory):
    transport_factory.fail_send = DispatchError("550 rejected")
    pipeline = make_pipeline(dispatcher, store)

    with pytest.raises(DispatchError):
        await pipeline.process(VALID_FIELDS, stored(store))

    assert store.pending() == []


async def test_sender_goes_to_reply_to(dispatcher, store, transport_factory):
    pipeline = make_pipeline(dispatcher, store)

    await pipeline.process(VALID_FIELDS)

    msg = transport_factory.sent[0].mime_message
    assert msg["From"] == SENDER_ADDRESS
    assert msg["Reply-To"] == VALID_FIELDS["from"]


async def test_quota_exceeded_when_alert_raises_unexpected_error(
    dispatcher, store, transport_factory
):
    transport_factory.verify_error = RuntimeError("relay spoke an unknown dialect")
    pipeline = make_pipeline(dispatcher, store, StubScanner(ScanVerdict.quota_exceeded()))

    with pytest.raises(ScanQuotaExceededError):
        await pipeline.process(VALID_FIELDS, stored(store))

    assert transport_factory.verify_calls == 1
    assert store.pending() == []
