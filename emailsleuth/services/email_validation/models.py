"""Email verification models."""

from enum import Enum

from pydantic import BaseModel, Field


class VerificationStatus(str, Enum):
    """Result status of a mailbox probe."""

    VALID = "valid"  # RCPT TO accepted (250/251)
    INVALID = "invalid"  # Mailbox rejected (550-554) or no MX
    UNKNOWN = "unknown"  # Temporary failure, busy server, transport error
    CATCH_ALL = "catch_all"  # Domain accepts any local part
    TIMEOUT = "timeout"  # Every MX host exceeded the deadline


class VerificationResult(BaseModel):
    """Result of verifying one address."""

    email: str
    is_valid: bool
    status: VerificationStatus
    confidence: int = Field(ge=0, le=100)
    reason: str | None = None
    provider: str = "smtp"


class ProbeOutcome(BaseModel):
    """Classification of a single SMTP session against one MX host."""

    status: VerificationStatus
    code: int | None = None
    message: str = ""
