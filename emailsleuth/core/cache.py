"""TTL cache service shared by the domain validator and the SMTP verifier.

Entries carry the time they were stored. A lookup older than the TTL is
treated as absent and evicted, never served stale. The clock is injectable so
expiry can be exercised deterministically in tests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from emailsleuth.core.datetime_utils import Clock, is_older_than, utc_now

DEFAULT_TTL = timedelta(hours=1)


class TTLCache[K, V]:
    """Process-wide key/value cache with per-entry expiry (last writer wins)."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Clock = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[K, tuple[V, datetime]] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def _fresh_entry(self, key: K) -> tuple[V, datetime] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if is_older_than(entry[1], self._ttl, now=self._clock()):
            # Expired - remove from cache
            del self._entries[key]
            return None
        return entry

    def get(self, key: K) -> V | None:
        """Return the cached value if present and fresh.

        Values may legitimately be falsy (a domain without MX caches False),
        so callers compare against None.
        """
        entry = self._fresh_entry(key)
        return entry[0] if entry is not None else None

    def __contains__(self, key: object) -> bool:
        return self._fresh_entry(key) is not None  # type: ignore[arg-type]

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (value, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class CacheRegistry:
    """
    The three caches the verification layer shares across concurrent crawls.

    mx: domain -> has MX (or A fallback) records
    mx_hosts: domain -> ordered MX host list
    catch_all: domain -> accepts random mailboxes
    results: lowercase address -> VerificationResult
    """

    ttl: timedelta = DEFAULT_TTL
    clock: Clock = utc_now
    mx: TTLCache = field(init=False)
    mx_hosts: TTLCache = field(init=False)
    catch_all: TTLCache = field(init=False)
    results: TTLCache = field(init=False)

    def __post_init__(self) -> None:
        self.mx = TTLCache(self.ttl, self.clock)
        self.mx_hosts = TTLCache(self.ttl, self.clock)
        self.catch_all = TTLCache(self.ttl, self.clock)
        self.results = TTLCache(self.ttl, self.clock)

    def clear_caches(self) -> None:
        """Drop every cached MX, catch-all and verification entry."""
        self.mx.clear()
        self.mx_hosts.clear()
        self.catch_all.clear()
        self.results.clear()

    def cache_stats(self) -> dict[str, int]:
        return {
            "mx_cache_size": len(self.mx),
            "catch_all_cache_size": len(self.catch_all),
            "verification_cache_size": len(self.results),
        }


_registry: CacheRegistry | None = None


def get_cache_registry() -> CacheRegistry:
    """Get the process-wide cache registry, creating it on first use."""
    global _registry
    if _registry is None:
        from emailsleuth.config import get_config

        ttl = timedelta(seconds=get_config().verification.cache_ttl_seconds)
        _registry = CacheRegistry(ttl=ttl)
    return _registry


def reset_cache_registry() -> None:
    """Reset the registry instance. Useful for testing."""
    global _registry
    _registry = None
