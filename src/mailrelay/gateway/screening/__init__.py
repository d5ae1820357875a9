"""
Request screening for the mail relay.

This package checks everything a send request carries before it reaches the
SMTP transport: field validation and sanitization, the attachment gate and
malware scanning.
"""

from .attachments import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    MAX_ATTACHMENT_SIZE,
    Attachment,
    AttachmentGate,
    RejectionReason,
    UploadStore,
)
from .scanner import MalwareScanner, ScanOutcome, ScanVerdict, create_malware_scanner
from .validator import SendRequest, sanitize, validate

__all__ = [
    # Attachments
    "ALLOWED_EXTENSIONS",
    "ALLOWED_MIME_TYPES",
    "MAX_ATTACHMENT_SIZE",
    "Attachment",
    "AttachmentGate",
    "RejectionReason",
    "UploadStore",
    # Scanning
    "MalwareScanner",
    "ScanOutcome",
    "ScanVerdict",
    "create_malware_scanner",
    # Validation
    "SendRequest",
    "sanitize",
    "validate",
]
