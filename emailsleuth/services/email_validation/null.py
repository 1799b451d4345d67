"""Null validator - passthrough when SMTP verification is disabled."""

from .base import BaseEmailValidator
from .models import VerificationResult, VerificationStatus


class NullValidator(BaseEmailValidator):
    """
    Passthrough validator that reports every address as unverified.

    Use when SMTP probing is disabled, no sender is configured, or for testing.
    """

    provider_name = "null"

    async def validate(self, email: str) -> VerificationResult:
        """Return an unverified result without touching the network."""
        return VerificationResult(
            email=email.strip().lower(),
            is_valid=True,
            status=VerificationStatus.UNKNOWN,
            confidence=50,
            reason="Verification disabled",
            provider=self.provider_name,
        )

    async def validate_batch(self, emails: list[str]) -> list[VerificationResult]:
        """Verify multiple emails (all unverified)."""
        return [await self.validate(email) for email in emails]
