"""SMTP mailbox verification with catch-all detection."""

import asyncio
import secrets
from collections.abc import Awaitable, Callable

from emailsleuth.config import VerificationConfig, get_config
from emailsleuth.core.cache import CacheRegistry, get_cache_registry
from emailsleuth.core.datetime_utils import epoch_millis
from emailsleuth.core.exceptions import EmailSleuthError
from emailsleuth.core.logging import get_logger

from .base import BaseEmailValidator
from .domain import DomainValidator
from .models import ProbeOutcome, VerificationResult, VerificationStatus
from .smtp_client import SmtpProbe

logger = get_logger(__name__)

VERIFICATION_SKIPPED = "verification skipped"

ProbeFn = Callable[[str, str], Awaitable[ProbeOutcome]]


def catch_all_probe_address(domain: str) -> str:
    """A mailbox that should not exist: ``nonexistent_<random>_<ms>@domain``."""
    return f"nonexistent_{secrets.token_hex(4)}_{epoch_millis()}@{domain}"


def skipped_result(email: str) -> VerificationResult:
    return VerificationResult(
        email=email,
        is_valid=False,
        status=VerificationStatus.UNKNOWN,
        confidence=40,
        reason=VERIFICATION_SKIPPED,
    )


class SmtpValidator(BaseEmailValidator):
    """
    Verify addresses by probing the domain's mail exchangers.

    Before a real address is probed, a random mailbox on the same domain is
    tried. If the server accepts it the domain is catch-all and positive
    replies carry no information, so every address there is reported
    CATCH_ALL without further probing.
    """

    provider_name = "smtp"

    def __init__(
        self,
        probe: SmtpProbe | ProbeFn,
        domains: DomainValidator | None = None,
        cache: CacheRegistry | None = None,
        config: VerificationConfig | None = None,
    ) -> None:
        """
        Initialize the verifier.

        Args:
            probe: SmtpProbe, or any ``async (host, recipient) -> ProbeOutcome``
            domains: MX resolver, sharing ``cache``
            cache: Cache registry holding the catch-all cache
            config: Verification config (MX host limit, batch deadline)
        """
        self._probe: ProbeFn = probe.probe if isinstance(probe, SmtpProbe) else probe
        self._cache = cache or get_cache_registry()
        self._domains = domains or DomainValidator(cache=self._cache)
        self._config = config or get_config().verification

    def _result(
        self,
        email: str,
        status: VerificationStatus,
        confidence: int,
        reason: str,
        is_valid: bool | None = None,
    ) -> VerificationResult:
        if is_valid is None:
            is_valid = status in (VerificationStatus.VALID, VerificationStatus.CATCH_ALL)
        return VerificationResult(
            email=email,
            is_valid=is_valid,
            status=status,
            confidence=confidence,
            reason=reason,
            provider=self.provider_name,
        )

    def _catch_all_result(self, email: str) -> VerificationResult:
        return self._result(
            email,
            VerificationStatus.CATCH_ALL,
            60,
            "Domain accepts all addresses",
        )

    async def is_catch_all(self, domain: str, hosts: list[str]) -> bool:
        """Probe a random mailbox on the primary MX; cached per domain."""
        cached = self._cache.catch_all.get(domain)
        if cached is not None:
            return cached

        outcome = await self._probe(hosts[0], catch_all_probe_address(domain))
        accepted = outcome.status == VerificationStatus.VALID
        # Only a clear accept or reject says anything about the domain
        if outcome.status in (VerificationStatus.VALID, VerificationStatus.INVALID):
            self._cache.catch_all.set(domain, accepted)
        logger.bind(domain=domain, catch_all=accepted, probe=outcome.status.value).debug(
            "catch_all_checked"
        )
        return accepted

    async def _probe_hosts(self, email: str, hosts: list[str]) -> VerificationResult:
        attempted = hosts[: self._config.max_mx_hosts]
        timeouts = 0
        last: ProbeOutcome | None = None

        for host in attempted:
            outcome = await self._probe(host, email)
            if outcome.status == VerificationStatus.VALID:
                return self._result(email, VerificationStatus.VALID, 95, f"Accepted by {host}")
            if outcome.status == VerificationStatus.INVALID:
                return self._result(
                    email,
                    VerificationStatus.INVALID,
                    90,
                    f"Rejected by {host}: {outcome.code}",
                )
            if outcome.status == VerificationStatus.TIMEOUT:
                timeouts += 1
            last = outcome

        if timeouts == len(attempted):
            # Slow servers are not evidence against the address
            return self._result(
                email,
                VerificationStatus.TIMEOUT,
                45,
                "All mail servers timed out",
                is_valid=True,
            )
        reason = last.message if last is not None and last.message else "Inconclusive response"
        return self._result(email, VerificationStatus.UNKNOWN, 40, reason)

    async def validate(self, email: str) -> VerificationResult:
        """Verify one address: MX lookup, catch-all check, then the real probe."""
        email = email.strip().lower()
        domain = email.rpartition("@")[2]

        try:
            hosts = await self._domains.mx_hosts(domain)
            if not hosts:
                return self._result(email, VerificationStatus.INVALID, 10, "No MX records")

            if await self.is_catch_all(domain, hosts):
                return self._catch_all_result(email)

            return await self._probe_hosts(email, hosts)
        except (EmailSleuthError, OSError) as e:
            logger.bind(email=email, error=str(e)).warning("smtp_verification_error")
            return self._result(email, VerificationStatus.UNKNOWN, 30, f"Verification error: {e}")

    async def _validate_group(
        self,
        addresses: list[str],
        results: dict[str, VerificationResult],
    ) -> None:
        first, *siblings = addresses
        head = await self.validate(first)
        results[first] = head

        for sibling in siblings:
            if head.status == VerificationStatus.CATCH_ALL:
                results[sibling] = self._catch_all_result(sibling)
            elif head.status in (VerificationStatus.TIMEOUT, VerificationStatus.UNKNOWN):
                # Same servers, same answer; skip the round trip
                results[sibling] = head.model_copy(update={"email": sibling})
            else:
                results[sibling] = await self.validate(sibling)

    async def validate_batch(self, emails: list[str]) -> list[VerificationResult]:
        """
        Verify many addresses, grouped by domain, under one overall deadline.

        Domains are verified concurrently. Addresses not reached before the
        deadline come back UNKNOWN with reason ``verification skipped``.
        """
        normalized = [email.strip().lower() for email in emails]
        groups: dict[str, list[str]] = {}
        for email in dict.fromkeys(normalized):
            groups.setdefault(email.rpartition("@")[2], []).append(email)

        results: dict[str, VerificationResult] = {}
        try:
            async with asyncio.timeout(self._config.batch_timeout_seconds):
                await asyncio.gather(
                    *(self._validate_group(group, results) for group in groups.values())
                )
        except TimeoutError:
            logger.bind(
                verified=len(results),
                skipped=len(set(normalized)) - len(results),
            ).warning("smtp_batch_timeout")

        return [results.get(email) or skipped_result(email) for email in normalized]
