"""
Attachment gate and temporary upload storage.

Uploaded files are written to the upload directory, admitted or rejected by
``AttachmentGate``, and always removed before the request finishes. The gate
records a SHA-256 digest on admission; ``AttachmentGate.final_check`` re-runs
the checks just before sending and returns the exact bytes it verified.
"""

import hashlib
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Union

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from ...common.exceptions import AttachmentRejectedError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"pdf", "png", "jpg", "jpeg"})
ALLOWED_MIME_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg"})
MAX_ATTACHMENT_SIZE = 5 * 1024 * 1024  # 5 MiB


class RejectionReason(str, Enum):
    """Why the gate refused a file."""

    DISALLOWED_TYPE = "disallowed_type"
    TOO_LARGE = "too_large"
    MODIFIED = "modified"
    MALICIOUS = "malicious"


@dataclass(frozen=True)
class Attachment:
    """An uploaded file waiting in the upload directory."""

    original_name: str
    stored_path: Path
    declared_mime_type: str
    size_bytes: int
    sha256: Optional[str] = None

    @property
    def extension(self) -> str:
        return Path(self.original_name).suffix.lower().lstrip(".")

    def delete(self) -> bool:
        """Remove the stored file. Returns True if a file was removed."""
        try:
            self.stored_path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted temporary attachment %s", self.stored_path)
        return True


def _digest(path: Path) -> tuple[str, bytes]:
    content = path.read_bytes()
    return hashlib.sha256(content).hexdigest(), content


class AttachmentGate:
    """
    Admits uploads whose extension, declared MIME type and size are allowed.

    Any rejection deletes the stored file before raising.
    """

    def __init__(
        self,
        allowed_extensions: frozenset[str] = ALLOWED_EXTENSIONS,
        allowed_mime_types: frozenset[str] = ALLOWED_MIME_TYPES,
        max_size: int = MAX_ATTACHMENT_SIZE,
    ) -> None:
        self.allowed_extensions = allowed_extensions
        self.allowed_mime_types = allowed_mime_types
        self.max_size = max_size

    def _reject(
        self, attachment: Attachment, reason: RejectionReason, **details: object
    ) -> AttachmentRejectedError:
        attachment.delete()
        logger.warning(
            "Attachment rejected",
            extra={
                "attachment": attachment.original_name,
                "reason": reason.value,
            },
        )
        return AttachmentRejectedError(
            attachment.original_name, reason.value, dict(details)
        )

    def _check(self, attachment: Attachment, size: int) -> None:
        if attachment.extension not in self.allowed_extensions:
            raise self._reject(
                attachment, RejectionReason.DISALLOWED_TYPE,
                extension=attachment.extension,
            )

        if attachment.declared_mime_type not in self.allowed_mime_types:
            raise self._reject(
                attachment, RejectionReason.DISALLOWED_TYPE,
                mime_type=attachment.declared_mime_type,
            )

        if size > self.max_size:
            raise self._reject(
                attachment, RejectionReason.TOO_LARGE,
                size=size, max_size=self.max_size,
            )

    def admit(self, attachment: Attachment) -> Attachment:
        """
        Check a freshly stored upload.

        Args:
            attachment: The stored upload.

        Returns:
            The same attachment with its SHA-256 digest recorded.

        Raises:
            AttachmentRejectedError: If any check fails. The file is gone.
        """
        self._check(attachment, attachment.size_bytes)

        try:
            digest, _ = _digest(attachment.stored_path)
        except OSError as e:
            raise self._reject(
                attachment, RejectionReason.MODIFIED, error=str(e))

        logger.debug(
            "Attachment admitted",
            extra={
                "attachment": attachment.original_name,
                "size": attachment.size_bytes,
            },
        )
        return Attachment(
            original_name=attachment.original_name,
            stored_path=attachment.stored_path,
            declared_mime_type=attachment.declared_mime_type,
            size_bytes=attachment.size_bytes,
            sha256=digest,
        )

    def final_check(self, attachment: Attachment) -> bytes:
        """
        Re-run the checks right before the file is attached.

        The file is re-read and re-hashed. The bytes returned are the bytes
        that passed, so later changes on disk cannot reach the message.

        Raises:
            AttachmentRejectedError: If the checks fail or the file changed
                since admission.
        """
        try:
            digest, content = _digest(attachment.stored_path)
        except OSError as e:
            raise self._reject(
                attachment, RejectionReason.MODIFIED, error=str(e))

        self._check(attachment, len(content))

        if attachment.sha256 is not None and digest != attachment.sha256:
            raise self._reject(attachment, RejectionReason.MODIFIED)

        return content


class UploadStore:
    """Writes uploads to the upload directory and guarantees their removal."""

    def __init__(self, upload_dir: Union[str, Path]) -> None:
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def save(self, upload: FileStorage) -> Attachment:
        """
        Persist an incoming file under a unique, sanitized name.

        Args:
            upload: The multipart file field.

        Returns:
            Attachment describing the stored file.
        """
        original_name = upload.filename or "attachment"
        safe_name = secure_filename(original_name) or "attachment"
        stored_path = self.upload_dir / (
            f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_name}"
        )
        upload.save(stored_path)

        attachment = Attachment(
            original_name=original_name,
            stored_path=stored_path,
            declared_mime_type=(upload.mimetype or "").lower(),
            size_bytes=stored_path.stat().st_size,
        )
        logger.info(
            "Upload received",
            extra={
                "attachment": original_name,
                "size": attachment.size_bytes,
                "mime_type": attachment.declared_mime_type,
            },
        )
        return attachment

    @contextmanager
    def hold(self, attachment: Optional[Attachment]) -> Iterator[Optional[Attachment]]:
        """Yield the attachment and delete its file on every exit path."""
        try:
            yield attachment
        finally:
            if attachment is not None:
                attachment.delete()

    def pending(self) -> list[Path]:
        """List files currently present in the upload directory."""
        return sorted(p for p in self.upload_dir.iterdir() if p.is_file())
