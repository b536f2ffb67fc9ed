"""Exchange rate cache.

Rates are stored per lower-cased currency with the fetch time and the name
of the provider that supplied them. Readers pass the maximum age they accept,
which lets one entry serve both as a fresh rate and as a stale fallback.
"""

import asyncio
import time

from ..domain.value_objects import CachedRate
from .repository import ConfigRepository

CACHE_KEY_PREFIX = "rate_"


class RateCache:
    """Simple in-memory cache for exchange rates."""

    def __init__(self) -> None:
        self._cache: dict[str, CachedRate] = {}
        self._lock = asyncio.Lock()

    async def get(self, currency: str, max_age: int | None = None) -> CachedRate | None:
        """Get the cached rate if it is not older than ``max_age`` seconds."""
        async with self._lock:
            entry = self._load(currency.lower())
        if entry is None:
            return None
        if max_age is not None and entry.age() > max_age:
            return None
        return entry

    async def set(self, currency: str, rate: float, provider: str) -> CachedRate:
        """Cache a rate fetched now."""
        entry = CachedRate(
            currency=currency.lower(),
            rate=float(rate),
            timestamp=int(time.time()),
            provider=provider,
        )
        async with self._lock:
            self._store(entry)
        return entry

    async def clear(self) -> None:
        """Clear all cached rates."""
        async with self._lock:
            self._cache.clear()

    def _load(self, currency: str) -> CachedRate | None:
        return self._cache.get(currency)

    def _store(self, entry: CachedRate) -> None:
        self._cache[entry.currency] = entry


class PersistentRateCache(RateCache):
    """Rate cache kept in the config table so it survives restarts.

    Entries are stored under ``rate_<currency>`` as
    ``{"rate": ..., "timestamp": ..., "provider": ...}``.
    """

    def __init__(self, config_repo: ConfigRepository) -> None:
        super().__init__()
        self.config_repo = config_repo

    async def clear(self) -> None:
        async with self._lock:
            for key in self.config_repo.find_by_prefix(CACHE_KEY_PREFIX):
                self.config_repo.delete(key)

    def _load(self, currency: str) -> CachedRate | None:
        data = self.config_repo.get(CACHE_KEY_PREFIX + currency)
        if not isinstance(data, dict) or "rate" not in data:
            return None
        return CachedRate.from_dict(currency, data)

    def _store(self, entry: CachedRate) -> None:
        self.config_repo.set(CACHE_KEY_PREFIX + entry.currency, entry.to_dict())
