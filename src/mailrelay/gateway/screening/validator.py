"""
Validation and sanitization of send requests.

Sanitization rules, applied in this order:

1. carriage return, line feed and tab become a single space each, so no
   value can smuggle extra header lines into the outgoing message;
2. every other control character (Unicode category ``Cc``) is removed;
3. surrounding whitespace is trimmed;
4. the result is HTML-escaped with ``ESCAPE_TABLE``.

Length bounds are checked on the sanitized value.
"""

import unicodedata
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from email_validator import EmailNotValidError, validate_email

from ...common.exceptions import ValidationError
from .attachments import Attachment

SUBJECT_MIN_LENGTH = 3
SUBJECT_MAX_LENGTH = 255
BODY_MIN_LENGTH = 10
BODY_MAX_LENGTH = 5000

ESCAPE_TABLE = str.maketrans({
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
    "\\": "&#x5C;",
    "`": "&#96;",
})

_LINE_BREAKS = str.maketrans({"\r": " ", "\n": " ", "\t": " "})


@dataclass(frozen=True)
class SendRequest:
    """A validated, sanitized request ready for dispatch."""

    sender: str
    recipient: str
    subject: str
    body: str
    attachment: Optional[Attachment] = None


def sanitize(value: str) -> str:
    """Apply the documented sanitization rules to a free-text value."""
    flattened = str(value).translate(_LINE_BREAKS)
    stripped = "".join(
        ch for ch in flattened if unicodedata.category(ch) != "Cc"
    )
    return stripped.strip().translate(ESCAPE_TABLE)


def _require_email(fields: Mapping[str, Any], name: str) -> str:
    raw = fields.get(name)
    if raw is None or not str(raw).strip():
        raise ValidationError(name, "field is required")

    candidate = str(raw).strip()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(name, "invalid email address", {"error": str(e)})
    return candidate


def _require_text(
    fields: Mapping[str, Any], name: str, min_length: int, max_length: int
) -> str:
    raw = fields.get(name)
    if raw is None:
        raise ValidationError(name, "field is required")

    cleaned = sanitize(raw)
    if not min_length <= len(cleaned) <= max_length:
        raise ValidationError(
            name,
            f"length must be between {min_length} and {max_length} characters",
            {"length": len(cleaned)},
        )
    return cleaned


def validate(
    fields: Mapping[str, Any], attachment: Optional[Attachment] = None
) -> SendRequest:
    """
    Validate raw request fields and build a ``SendRequest``.

    Checks run in a fixed order and stop at the first failure: ``from``,
    ``to``, ``subject`` and ``text``. Callers own any pending attachment and
    must release it when this raises.

    Args:
        fields: Raw form or JSON fields.
        attachment: Already admitted attachment, if any.

    Returns:
        The validated request with sanitized subject and body.

    Raises:
        ValidationError: On the first field that fails.
    """
    sender = _require_email(fields, "from")
    recipient = _require_email(fields, "to")
    subject = _require_text(
        fields, "subject", SUBJECT_MIN_LENGTH, SUBJECT_MAX_LENGTH)
    body = _require_text(fields, "text", BODY_MIN_LENGTH, BODY_MAX_LENGTH)

    return SendRequest(
        sender=sender,
        recipient=recipient,
        subject=subject,
        body=body,
        attachment=attachment,
    )
