"""
Custom exceptions for the mailrelay service.

Every exception carries the HTTP status the gateway answers with, so the
Flask error handlers can translate failures without per-route mapping.
"""

from typing import Any, Optional


class MailRelayError(Exception):
    """Base exception for all mailrelay errors."""

    http_status: int = 500

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Configuration Exceptions
class ConfigurationError(MailRelayError):
    """Base exception for configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        """
        Initialize missing config error.

        Args:
            config_key: The missing configuration key.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


# Security Exceptions
class AuthenticationError(MailRelayError):
    """Raised when the API key is missing or wrong."""

    http_status = 401


class CsrfError(MailRelayError):
    """Raised when the anti-forgery token is missing or does not match."""

    http_status = 403

    def __init__(self, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            "Form submission failed security validation. "
            "Please refresh the page and try again.",
            details,
        )


# Input Exceptions
class ValidationError(MailRelayError):
    """Raised when a send request field fails validation."""

    http_status = 400

    def __init__(
        self,
        field: str,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize validation error.

        Args:
            field: The field that failed validation.
            reason: The reason for validation failure.
            details: Optional dictionary with additional error details.
        """
        super().__init__(f"Validation failed for '{field}': {reason}", details)
        self.field = field
        self.reason = reason


class AttachmentRejectedError(MailRelayError):
    """Raised when an uploaded file is refused by the attachment gate."""

    http_status = 400

    def __init__(
        self,
        filename: str,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize attachment rejected error.

        Args:
            filename: Original name of the uploaded file.
            reason: Rejection reason code (see ``RejectionReason``).
            details: Optional dictionary with additional error details.
        """
        super().__init__(f"Attachment '{filename}' rejected: {reason}", details)
        self.filename = filename
        self.reason = reason


# Malware Scan Exceptions
class ScanError(MailRelayError):
    """Raised when the malware scan could not produce a verdict."""

    def __init__(
        self, reason: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(f"Malware scan failed: {reason}", details)
        self.reason = reason


class ScanTimeoutError(ScanError):
    """Raised when no completed scan report arrived in time."""

    def __init__(
        self, attempts: int, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(
            f"no completed report after {attempts} attempts", details)
        self.attempts = attempts


class ScanQuotaExceededError(MailRelayError):
    """Raised when the scanning service refuses work due to quota."""

    http_status = 429

    def __init__(self, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            "Malware scanning quota exhausted. Please try again later.",
            details,
        )


# Dispatch Exceptions
class DispatchError(MailRelayError):
    """Raised when the message could not be handed to the SMTP transport."""


class TransportConnectionError(DispatchError):
    """Raised when the SMTP server cannot be reached."""


class TransportAuthError(DispatchError):
    """Raised when SMTP authentication fails."""


class DiagnosticModeError(MailRelayError):
    """Raised when an operation is refused in diagnostic mode."""

    http_status = 400

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"Operation '{operation}' is not available in diagnostic mode")
        self.operation = operation
