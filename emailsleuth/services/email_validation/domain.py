"""MX-backed domain validation.

One DNS lookup per domain, shared through the cache registry. A domain with
no MX but a resolvable A record still counts as mail-capable, since RFC 5321
delivery falls back to the address record.
"""

from collections import defaultdict

import dns.asyncresolver
import dns.exception
import dns.resolver

from emailsleuth.config import VerificationConfig, get_config
from emailsleuth.core.cache import CacheRegistry, get_cache_registry
from emailsleuth.core.logging import get_logger

from .pre_validator import is_disposable_domain, is_reserved_domain

logger = get_logger(__name__)


class DomainValidator:
    """Keeps or drops addresses per domain based on a single MX lookup."""

    def __init__(
        self,
        cache: CacheRegistry | None = None,
        resolver: dns.asyncresolver.Resolver | None = None,
        config: VerificationConfig | None = None,
    ) -> None:
        self._cache = cache or get_cache_registry()
        self._resolver = resolver
        self._config = config or get_config().verification

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
        return self._resolver

    async def _resolve(self, domain: str) -> tuple[list[str], bool]:
        """Look up mail hosts; returns (hosts, conclusive)."""
        resolver = self._get_resolver()
        lifetime = self._config.dns_lifetime_seconds
        try:
            answers = await resolver.resolve(domain, "MX", lifetime=lifetime)
            # sort by preference (lowest first), strip trailing dots
            records = sorted(answers, key=lambda r: r.preference)
            hosts = [str(r.exchange).rstrip(".") for r in records]
            # Null MX (RFC 7505) means the domain accepts no mail
            return [h for h in hosts if h], True
        except dns.resolver.NoAnswer:
            try:
                await resolver.resolve(domain, "A", lifetime=lifetime)
                return [domain], True
            except dns.exception.DNSException:
                return [], True
        except (dns.resolver.NXDOMAIN, dns.resolver.NoNameservers):
            return [], True
        except dns.exception.Timeout:
            return [], False
        except dns.exception.DNSException as e:
            logger.bind(domain=domain, error=str(e)).debug("mx_lookup_error")
            return [], False

    async def mx_hosts(self, domain: str) -> list[str]:
        """Mail hosts for ``domain`` in preference order (cached)."""
        domain = domain.lower().strip(".")
        cached = self._cache.mx_hosts.get(domain)
        if cached is not None:
            return cached

        hosts, conclusive = await self._resolve(domain)
        if conclusive:
            self._cache.mx_hosts.set(domain, hosts)
            self._cache.mx.set(domain, bool(hosts))
        logger.bind(domain=domain, hosts=len(hosts), cached=conclusive).debug("mx_resolved")
        return hosts

    async def has_mx(self, domain: str) -> bool:
        domain = domain.lower().strip(".")
        cached = self._cache.mx.get(domain)
        if cached is not None:
            return cached
        return bool(await self.mx_hosts(domain))

    async def accepts_mail(self, domain: str) -> bool:
        """False for disposable or reserved domains and for domains without mail hosts."""
        if is_disposable_domain(domain) or is_reserved_domain(domain):
            return False
        return await self.has_mx(domain)

    async def validate(self, addresses: list[str]) -> list[str]:
        """
        Filter addresses to those whose domain can receive mail.

        Every address sharing a domain is kept or dropped together.

        Args:
            addresses: Candidate addresses

        Returns:
            Surviving addresses in their original order
        """
        by_domain: dict[str, list[str]] = defaultdict(list)
        for address in addresses:
            _, _, domain = address.lower().rpartition("@")
            by_domain[domain].append(address)

        verdicts = {domain: await self.accepts_mail(domain) for domain in by_domain if domain}
        kept = [a for a in addresses if verdicts.get(a.lower().rpartition("@")[2], False)]

        logger.debug(
            "domains_validated",
            domains=len(verdicts),
            kept=len(kept),
            dropped=len(addresses) - len(kept),
        )
        return kept
