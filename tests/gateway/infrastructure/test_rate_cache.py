"""Tests for the exchange rate caches."""

import time

import pytest

from cashupay.gateway.infrastructure.rate_cache import PersistentRateCache, RateCache
from cashupay.gateway.infrastructure.repository import ConfigRepository


class TestRateCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = RateCache()
        await cache.set("EUR", 50000, "coingecko")

        entry = await cache.get("eur")

        assert entry.rate == 50000.0
        assert entry.provider == "coingecko"
        assert entry.currency == "eur"

    @pytest.mark.asyncio
    async def test_missing(self):
        assert await RateCache().get("eur") is None

    @pytest.mark.asyncio
    async def test_max_age(self):
        cache = RateCache()
        await cache.set("eur", 50000, "coingecko")

        assert await cache.get("eur", max_age=300) is not None
        assert await cache.get("eur", max_age=-1) is None

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = RateCache()
        await cache.set("eur", 50000, "coingecko")
        await cache.clear()
        assert await cache.get("eur") is None


class TestPersistentRateCache:
    @pytest.mark.asyncio
    async def test_stored_in_config_table(self, db_session):
        repo = ConfigRepository(db_session)
        cache = PersistentRateCache(repo)

        await cache.set("EUR", 50000.5, "kraken")

        stored = repo.get("rate_eur")
        assert stored["rate"] == 50000.5
        assert stored["provider"] == "kraken"
        assert abs(stored["timestamp"] - int(time.time())) <= 2

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, db_session):
        await PersistentRateCache(ConfigRepository(db_session)).set("usd", 60000, "binance")

        entry = await PersistentRateCache(ConfigRepository(db_session)).get("USD")

        assert entry.rate == 60000.0
        assert entry.provider == "binance"

    @pytest.mark.asyncio
    async def test_old_entry_filtered_by_age(self, db_session):
        repo = ConfigRepository(db_session)
        repo.set(
            "rate_eur",
            {"rate": 48000.0, "timestamp": int(time.time()) - 1000, "provider": "kraken"},
        )
        cache = PersistentRateCache(repo)

        assert await cache.get("eur", max_age=300) is None
        assert (await cache.get("eur", max_age=3600)).rate == 48000.0

    @pytest.mark.asyncio
    async def test_clear_only_removes_rates(self, db_session):
        repo = ConfigRepository(db_session)
        repo.set("internal_background_key", "abc")
        cache = PersistentRateCache(repo)
        await cache.set("eur", 50000, "coingecko")

        await cache.clear()

        assert await cache.get("eur") is None
        assert repo.get("internal_background_key") == "abc"
