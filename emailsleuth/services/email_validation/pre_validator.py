"""Free checks that run before any DNS or SMTP traffic.

Malformed addresses, reserved domains and disposable mailbox providers are
rejected here so they never cost a lookup or a socket.
"""

from emailsleuth.pipeline.tables import get_tables
from emailsleuth.pipeline.validation import domain_matches, is_well_formed

from .base import BaseEmailValidator
from .models import VerificationResult, VerificationStatus

# RFC 2606 reserved second-level domains
RESERVED_DOMAINS = frozenset(
    {
        "example.com",
        "example.org",
        "example.net",
        "example.edu",
        "test.com",
        "test.org",
        "test.net",
        "localhost.localdomain",
    }
)


def is_reserved_domain(domain: str) -> bool:
    domain = domain.lower().strip(".")
    return domain in RESERVED_DOMAINS or domain.rsplit(".", 1)[-1] in get_tables().reserved_tlds


def is_disposable_domain(domain: str) -> bool:
    """Disposable mailbox providers, including their subdomains."""
    return domain_matches(domain.lower().strip("."), get_tables().disposable_domains)


def rejection_reason(email: str) -> str | None:
    """Why ``email`` fails the free checks, or None if it should be probed."""
    if not is_well_formed(email):
        return "Invalid email format"
    domain = email.strip().lower().split("@")[1]
    if is_reserved_domain(domain):
        return f"Reserved domain: {domain}"
    if is_disposable_domain(domain):
        return f"Disposable domain: {domain}"
    return None


class PreValidator(BaseEmailValidator):
    """Rejects what the free checks catch and hands the rest to ``validator``."""

    provider_name = "pre_validator"

    def __init__(self, validator: BaseEmailValidator) -> None:
        self._inner = validator

    def _rejected(self, email: str, reason: str) -> VerificationResult:
        return VerificationResult(
            email=email,
            is_valid=False,
            status=VerificationStatus.INVALID,
            confidence=90,
            reason=reason,
            provider=self.provider_name,
        )

    def check(self, email: str) -> VerificationResult | None:
        reason = rejection_reason(email)
        return None if reason is None else self._rejected(email.strip().lower(), reason)

    async def validate(self, email: str) -> VerificationResult:
        return self.check(email) or await self._inner.validate(email.strip().lower())

    async def validate_batch(self, emails: list[str]) -> list[VerificationResult]:
        """Results in input order; only survivors of the free checks go downstream."""
        verdicts = [self.check(email) for email in emails]
        survivors = [email.strip().lower() for email, verdict in zip(emails, verdicts) if verdict is None]
        downstream = iter(await self._inner.validate_batch(survivors) if survivors else [])
        return [verdict or next(downstream) for verdict in verdicts]

    def should_allow(self, result: VerificationResult) -> bool:
        return self._inner.should_allow(result)
