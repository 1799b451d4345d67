"""Result cache in front of another validator."""

from emailsleuth.core.cache import TTLCache, get_cache_registry
from emailsleuth.core.logging import get_logger

from .base import BaseEmailValidator
from .models import VerificationResult
from .smtp import VERIFICATION_SKIPPED

logger = get_logger(__name__)


def _key(email: str) -> str:
    return email.strip().lower()


class CachedValidator(BaseEmailValidator):
    """
    Wraps a validator and remembers its verdicts by lowercase address.

    Every outcome is kept for the cache TTL, negatives included. Results for
    addresses skipped because the batch deadline ran out are not kept, so the
    next scan gets a real answer for them.
    """

    def __init__(
        self,
        validator: BaseEmailValidator,
        cache: TTLCache[str, VerificationResult] | None = None,
    ) -> None:
        self._inner = validator
        self._cache = cache if cache is not None else get_cache_registry().results

    @property
    def provider_name(self) -> str:  # type: ignore[override]
        return f"cached:{self._inner.provider_name}"

    def _remember(self, result: VerificationResult) -> None:
        if result.reason == VERIFICATION_SKIPPED:
            return
        self._cache.set(_key(result.email), result)

    async def validate(self, email: str) -> VerificationResult:
        hit = self._cache.get(_key(email))
        if hit is not None:
            return hit

        result = await self._inner.validate(email)
        self._remember(result)
        return result

    async def validate_batch(self, emails: list[str]) -> list[VerificationResult]:
        """
        Answer cached addresses directly and send the rest down in one batch.

        An address repeated in ``emails`` (in any case) is verified once.
        Results come back in input order.
        """
        known: dict[str, VerificationResult] = {}
        pending: set[str] = set()
        misses: list[str] = []
        for email in emails:
            key = _key(email)
            if key in known or key in pending:
                continue
            hit = self._cache.get(key)
            if hit is not None:
                known[key] = hit
            else:
                pending.add(key)
                misses.append(email)

        if misses:
            for result in await self._inner.validate_batch(misses):
                self._remember(result)
                known[_key(result.email)] = result

        logger.bind(cached=len(emails) - len(misses), verified=len(misses)).debug("verification_cache_batch")
        return [known[_key(email)] for email in emails if _key(email) in known]

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_size(self) -> int:
        return len(self._cache)

    def should_allow(self, result: VerificationResult) -> bool:
        return self._inner.should_allow(result)
