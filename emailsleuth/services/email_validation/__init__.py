"""Email verification service with provider abstraction."""

from emailsleuth.config import get_config, get_settings
from emailsleuth.core.cache import get_cache_registry
from emailsleuth.core.logging import get_logger

from .base import BaseEmailValidator
from .cached import CachedValidator
from .domain import DomainValidator
from .models import ProbeOutcome, VerificationResult, VerificationStatus
from .null import NullValidator
from .pre_validator import PreValidator
from .smtp import SmtpValidator
from .smtp_client import SmtpProbe

__all__ = [
    "BaseEmailValidator",
    "CachedValidator",
    "DomainValidator",
    "NullValidator",
    "PreValidator",
    "ProbeOutcome",
    "SmtpProbe",
    "SmtpValidator",
    "VerificationResult",
    "VerificationStatus",
    "batch_verify_emails",
    "get_email_validator",
    "reset_email_validator",
]

logger = get_logger(__name__)

_validator_instance: BaseEmailValidator | None = None


def get_email_validator() -> BaseEmailValidator:
    """
    Get the configured email validator instance.

    Uses singleton pattern so the caches are shared across crawls.
    Falls back to NullValidator if SMTP probing is disabled or no sender
    address is configured.
    """
    global _validator_instance
    if _validator_instance is not None:
        return _validator_instance

    settings = get_settings()

    if not settings.smtp_enabled or not settings.smtp_sender:
        # Verification disabled - use passthrough
        logger.info("smtp_verification_disabled")
        _validator_instance = NullValidator()
    else:
        config = get_config().verification
        registry = get_cache_registry()
        probe = SmtpProbe(
            sender=settings.smtp_sender,
            helo_domain=settings.smtp_helo_domain,
            port=config.smtp_port,
            timeout_seconds=config.smtp_timeout_seconds,
        )
        smtp = SmtpValidator(
            probe,
            domains=DomainValidator(cache=registry, config=config),
            cache=registry,
            config=config,
        )
        _validator_instance = PreValidator(CachedValidator(smtp, cache=registry.results))

    return _validator_instance


def reset_email_validator() -> None:
    """Reset the validator instance. Useful for testing."""
    global _validator_instance
    _validator_instance = None


async def batch_verify_emails(addresses: list[str]) -> list[VerificationResult]:
    """Verify addresses with the configured validator, grouped by domain."""
    return await get_email_validator().validate_batch(addresses)
