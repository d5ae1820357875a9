"""
Pydantic schemas for mailrelay gateway request/response validation.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# Base Schemas
# =============================================================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )

    def to_response(self) -> dict[str, Any]:
        """Serialize for a JSON response (camelCase, no unset optionals)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Mail Schemas
# =============================================================================


class SendMailResponse(BaseSchema):
    """Schema for a relayed message."""

    message_id: str = Field(..., description="Message-ID of the relayed mail")
    success: bool = Field(default=True)
    preview_url: Optional[str] = Field(
        None, description="Web preview of the message (diagnostic mode only)"
    )


class StatusResponse(BaseSchema):
    """Schema for the transport status endpoint."""

    status: str = Field(..., description="operational or error")
    timestamp: Optional[datetime] = None
    mode: Optional[str] = None
    message: Optional[str] = None


class TransportConfigResponse(BaseSchema):
    """Non-secret SMTP connection parameters."""

    mode: str
    host: Optional[str] = None
    port: Optional[int] = None
    secure: Optional[bool] = None
    sender_address: Optional[str] = None


class ConfigUpdateRequest(BaseSchema):
    """
    Schema for replacing the SMTP relay configuration.

    Omitted fields keep their current value. Credentials are only kept
    while the relay host and port are unchanged.
    """

    host: Optional[str] = Field(None, min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    secure: Optional[bool] = None
    username: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = Field(None, max_length=1024)
    sender_address: Optional[EmailStr] = None

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: Optional[str]) -> Optional[str]:
        """Reject hosts containing whitespace or a scheme."""
        if v is not None and (any(c.isspace() for c in v) or "://" in v):
            raise ValueError("host must be a bare hostname or IP address")
        return v


# =============================================================================
# Security Schemas
# =============================================================================


class CsrfTokenResponse(BaseSchema):
    """Schema for an issued anti-forgery token."""

    token: str = Field(..., description="Value to send in X-CSRF-Token")


# =============================================================================
# Error and Health Schemas
# =============================================================================


class ErrorResponse(BaseModel):
    """Schema for API error response."""

    error: dict[str, Any] = Field(
        ...,
        description="Error information",
    )
    request_id: Optional[str] = Field(
        None,
        description="Request ID for debugging",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Error timestamp",
    )

    @classmethod
    def create(
        cls,
        code: int,
        name: str,
        message: str,
        request_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorResponse":
        """
        Create an error response.

        Args:
            code: HTTP status code.
            name: Error name.
            message: Error message.
            request_id: Optional request ID.
            details: Optional error details.

        Returns:
            ErrorResponse instance.
        """
        error_data: dict[str, Any] = {
            "code": code,
            "name": name,
            "message": message,
        }

        if details:
            error_data["details"] = details

        return cls(
            error=error_data,
            request_id=request_id,
        )


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str = Field(..., description="Health status")
    service: str = Field(default="mailrelay", description="Service name")
    version: Optional[str] = Field(None, description="Service version")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Check timestamp",
    )
    checks: Optional[dict[str, Any]] = Field(
        None,
        description="Individual health check results",
    )


__all__ = [
    "BaseSchema",
    "ConfigUpdateRequest",
    "CsrfTokenResponse",
    "ErrorResponse",
    "HealthResponse",
    "SendMailResponse",
    "StatusResponse",
    "TransportConfigResponse",
]
