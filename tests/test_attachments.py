"""
Tests for the attachment gate and the upload store.
"""

import io

import pytest
from werkzeug.datastructures import FileStorage

from mailrelay.common.exceptions import AttachmentRejectedError
from mailrelay.gateway.screening.attachments import (
    MAX_ATTACHMENT_SIZE,
    Attachment,
    AttachmentGate,
    RejectionReason,
    UploadStore,
)

from conftest import PDF_BYTES


def store_file(store: UploadStore, content: bytes, filename: str, mime_type: str) -> Attachment:
    upload = FileStorage(
        stream=io.BytesIO(content),
        filename=filename,
        content_type=mime_type,
    )
    return store.save(upload)


@pytest.fixture
def store(upload_dir) -> UploadStore:
    return UploadStore(upload_dir)


@pytest.fixture
def gate() -> AttachmentGate:
    return AttachmentGate()


class TestUploadStore:
    def test_save_writes_file_with_prefixed_name(self, store):
        attachment = store_file(store, PDF_BYTES, "report.pdf", "application/pdf")

        assert attachment.stored_path.exists()
        assert attachment.stored_path.parent == store.upload_dir
        assert attachment.stored_path.name.endswith("-report.pdf")
        assert attachment.original_name == "report.pdf"
        assert attachment.size_bytes == len(PDF_BYTES)
        assert attachment.declared_mime_type == "application/pdf"

    def test_save_strips_directory_components(self, store):
        attachment = store_file(store, PDF_BYTES, "../../etc/passwd.pdf", "application/pdf")

        assert attachment.stored_path.parent == store.upload_dir

    def test_same_name_twice_gets_two_files(self, store):
        first = store_file(store, PDF_BYTES, "a.pdf", "application/pdf")
        second = store_file(store, PDF_BYTES, "a.pdf", "application/pdf")

        assert first.stored_path != second.stored_path
        assert len(store.pending()) == 2

    def test_hold_deletes_on_success(self, store):
        attachment = store_file(store, PDF_BYTES, "a.pdf", "application/pdf")

        with store.hold(attachment):
            assert attachment.stored_path.exists()

        assert not attachment.stored_path.exists()

    def test_hold_deletes_on_error(self, store):
        attachment = store_file(store, PDF_BYTES, "a.pdf", "application/pdf")

        with pytest.raises(RuntimeError):
            with store.hold(attachment):
                raise RuntimeError("boom")

        assert store.pending() == []

    def test_hold_accepts_no_attachment(self, store):
        with store.hold(None) as held:
            assert held is None

    def test_delete_is_idempotent(self, store):
        attachment = store_file(store, PDF_BYTES, "a.pdf", "application/pdf")

        assert attachment.delete() is True
        assert attachment.delete() is False


class TestAttachmentGate:
    @pytest.mark.parametrize(
        "filename,mime_type",
        [
            ("doc.pdf", "application/pdf"),
            ("image.png", "image/png"),
            ("photo.jpg", "image/jpeg"),
            ("PHOTO.JPEG", "image/jpeg"),
        ],
    )
    def test_allowed_types_are_admitted(self, store, gate, filename, mime_type):
        attachment = store_file(store, PDF_BYTES, filename, mime_type)

        admitted = gate.admit(attachment)

        assert admitted.sha256 is not None
        assert admitted.stored_path.exists()

    def test_disallowed_extension_is_rejected_and_deleted(self, store, gate):
        attachment = store_file(store, b"MZ\x90\x00", "tool.exe", "application/pdf")

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.admit(attachment)

        assert exc_info.value.reason == RejectionReason.DISALLOWED_TYPE.value
        assert not attachment.stored_path.exists()

    def test_disallowed_mime_type_is_rejected_and_deleted(self, store, gate):
        attachment = store_file(store, PDF_BYTES, "doc.pdf", "application/x-msdownload")

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.admit(attachment)

        assert exc_info.value.reason == RejectionReason.DISALLOWED_TYPE.value
        assert not attachment.stored_path.exists()

    def test_oversized_file_is_rejected_and_deleted(self, store, gate):
        content = b"\0" * (MAX_ATTACHMENT_SIZE + 1)
        attachment = store_file(store, content, "big.pdf", "application/pdf")

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.admit(attachment)

        assert exc_info.value.reason == RejectionReason.TOO_LARGE.value
        assert exc_info.value.http_status == 400
        assert store.pending() == []

    def test_file_at_size_limit_is_admitted(self, store, gate):
        content = b"\0" * MAX_ATTACHMENT_SIZE
        attachment = store_file(store, content, "limit.pdf", "application/pdf")

        assert gate.admit(attachment).size_bytes == MAX_ATTACHMENT_SIZE

    def test_final_check_returns_verified_bytes(self, store, gate):
        admitted = gate.admit(store_file(store, PDF_BYTES, "doc.pdf", "application/pdf"))

        assert gate.final_check(admitted) == PDF_BYTES

    def test_final_check_detects_modified_file(self, store, gate):
        admitted = gate.admit(store_file(store, PDF_BYTES, "doc.pdf", "application/pdf"))
        admitted.stored_path.write_bytes(b"%PDF-1.4 something else")

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.final_check(admitted)

        assert exc_info.value.reason == RejectionReason.MODIFIED.value
        assert not admitted.stored_path.exists()

    def test_final_check_detects_growth_past_limit(self, store, gate):
        admitted = gate.admit(store_file(store, PDF_BYTES, "doc.pdf", "application/pdf"))
        admitted.stored_path.write_bytes(b"\0" * (MAX_ATTACHMENT_SIZE + 1))

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.final_check(admitted)

        assert exc_info.value.reason == RejectionReason.TOO_LARGE.value

    def test_final_check_on_missing_file(self, store, gate):
        admitted = gate.admit(store_file(store, PDF_BYTES, "doc.pdf", "application/pdf"))
        admitted.delete()

        with pytest.raises(AttachmentRejectedError) as exc_info:
            gate.final_check(admitted)

        assert exc_info.value.reason == RejectionReason.MODIFIED.value
