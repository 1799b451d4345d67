"""Contract shared by the verification layers.

Layers stack: pre-checks wrap the result cache, which wraps the SMTP
verifier. Each one takes addresses and answers with a VerificationResult per
address, so the crawl never needs to know which layer produced a verdict.
"""

from abc import ABC, abstractmethod

from .models import VerificationResult, VerificationStatus


class BaseEmailValidator(ABC):
    """One verification layer."""

    provider_name: str = "unknown"

    @abstractmethod
    async def validate(self, email: str) -> VerificationResult:
        """
        Verdict for one address.

        Never raises for network trouble: unreachable MX hosts, slow servers
        and resolver failures come back as UNKNOWN or TIMEOUT results.
        """

    @abstractmethod
    async def validate_batch(self, emails: list[str]) -> list[VerificationResult]:
        """
        Verdicts for a page's worth of addresses, one per input, in input order.

        Implementations may share work between addresses on the same domain
        (one MX lookup, one catch-all probe) and may stop at a batch deadline,
        marking unfinished addresses as skipped rather than dropping them.
        """

    def should_allow(self, result: VerificationResult) -> bool:
        """
        Whether the crawl keeps an address after verification.

        Only INVALID (mailbox rejected, or no mail exchanger) drops it.
        TIMEOUT, UNKNOWN and catch-all verdicts keep the address with
        lowered confidence.
        """
        return result.status != VerificationStatus.INVALID
