"""Currency conversion service.

Converts merchant amounts between fiat currencies, BTC, sat and msat, pivoting
through BTC with prices from several providers. All arithmetic is Decimal
with truncation so results never round up in the customer's disfavour.
"""

import math
import time
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from ....exceptions import RateUnavailableError, ValidationError
from ....utils.config import Settings
from ....utils.logging import get_logger
from ...infrastructure.rate_cache import RateCache
from ...infrastructure.rate_provider import PriceProvider, create_price_providers

logger = get_logger(__name__)

SATS_PER_BTC = Decimal("100000000")
MSATS_PER_BTC = Decimal("100000000000")
CENTS_PER_UNIT = Decimal("100")

NON_FIAT = frozenset({"BTC", "SAT", "SATS", "MSAT"})


def _truncate(value: Decimal, places: int) -> Decimal:
    """Truncate to ``places`` decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)


def _to_decimal(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(
            "Amount must be a decimal number", field="amount", value=amount
        ) from e
    if not value.is_finite():
        raise ValidationError("Amount must be a decimal number", field="amount", value=amount)
    return value


def normalize_unit(unit: str) -> str:
    """Upper-case a unit and fold SATS into SAT."""
    unit = unit.strip().upper()
    return "SAT" if unit == "SATS" else unit


class CurrencyConversionService:
    """Multi-provider BTC price lookup and unit conversion.

    Provider lookup order for a currency is: fresh cache, the caller's primary
    provider, its secondary provider, then every remaining provider in
    registry order. When all providers fail a stale cache entry is used.
    """

    def __init__(
        self,
        providers: dict[str, PriceProvider],
        cache: RateCache | None = None,
        cache_ttl_seconds: int = 300,
        stale_ttl_seconds: int = 3600,
    ):
        self.providers = providers
        self.cache = cache or RateCache()
        self.cache_ttl = cache_ttl_seconds
        self.stale_ttl = stale_ttl_seconds

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def _provider_order(self, primary: str | None, secondary: str | None) -> list[PriceProvider]:
        order: list[PriceProvider] = []
        if primary and primary in self.providers:
            order.append(self.providers[primary])
        if secondary and secondary in self.providers and secondary != primary:
            order.append(self.providers[secondary])
        for name, provider in self.providers.items():
            if name not in (primary, secondary):
                order.append(provider)
        return order

    async def get_btc_price(
        self,
        currency: str,
        primary: str | None = None,
        secondary: str | None = None,
    ) -> Decimal | None:
        """Get the price of 1 BTC in ``currency``.

        Returns:
            Price, or None for non-fiat units and when no rate is available
        """
        currency = currency.strip().lower()
        if currency.upper() in NON_FIAT:
            return None

        cached = await self.cache.get(currency, max_age=self.cache_ttl)
        if cached is not None:
            return Decimal(str(cached.rate))

        for provider in self._provider_order(primary, secondary):
            try:
                price = await provider.get_btc_price(currency)
            except Exception as e:
                logger.warning(
                    "rate_provider_failed",
                    provider=provider.name,
                    currency=currency,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if price is not None and price > 0:
                await self.cache.set(currency, float(price), provider.name)
                logger.debug("rate_fetched", provider=provider.name, currency=currency)
                return price

        stale = await self.cache.get(currency, max_age=self.stale_ttl)
        if stale is not None:
            logger.warning(
                "rate_using_stale_cache",
                currency=currency,
                provider=stale.provider,
                age_seconds=stale.age(),
            )
            return Decimal(str(stale.rate))

        logger.error("rate_unavailable", currency=currency)
        return None

    async def _require_price(
        self, currency: str, primary: str | None, secondary: str | None
    ) -> Decimal:
        price = await self.get_btc_price(currency, primary, secondary)
        if price is None:
            raise RateUnavailableError(
                f"Cannot get exchange rate for {currency.upper()}", currency=currency.upper()
            )
        return price

    # ------------------------------------------------------------------
    # Conversion steps
    # ------------------------------------------------------------------

    async def _to_btc(
        self, amount: Decimal, currency: str, primary: str | None, secondary: str | None
    ) -> Decimal:
        if currency == "BTC":
            return amount
        if currency == "SAT":
            return _truncate(amount / SATS_PER_BTC, 8)
        if currency == "MSAT":
            return _truncate(amount / MSATS_PER_BTC, 11)

        price = await self._require_price(currency, primary, secondary)
        return _truncate(amount / price, 8)

    async def _from_btc(
        self, btc_amount: Decimal, currency: str, primary: str | None, secondary: str | None
    ) -> Decimal:
        if currency == "BTC":
            return btc_amount
        if currency == "SAT":
            return _truncate(btc_amount * SATS_PER_BTC, 0)
        if currency == "MSAT":
            return _truncate(btc_amount * MSATS_PER_BTC, 0)

        price = await self._require_price(currency, primary, secondary)
        return _truncate(btc_amount * price, 8)

    @staticmethod
    def to_smallest_unit(amount: Decimal, unit: str) -> int:
        """Express an amount in the unit's smallest denomination.

        BTC becomes sats, fiat becomes cents, SAT and MSAT stay whole units.
        """
        unit = normalize_unit(unit)
        if unit == "BTC":
            return int(_truncate(amount * SATS_PER_BTC, 0))
        if unit in ("SAT", "MSAT"):
            return int(_truncate(amount, 0))
        return int(_truncate(amount * CENTS_PER_UNIT, 0))

    # ------------------------------------------------------------------
    # Public conversions
    # ------------------------------------------------------------------

    async def convert_to_mint_unit(
        self,
        amount: str | Decimal | int,
        request_currency: str,
        mint_unit: str,
        fee_percent: float | Decimal = 0,
        primary: str | None = None,
        secondary: str | None = None,
    ) -> int:
        """Convert a requested amount into the mint's smallest unit.

        Args:
            amount: Amount in ``request_currency`` (decimal string preferred)
            request_currency: Currency of the request (EUR, USD, SAT, BTC...)
            mint_unit: The mint's accounting unit (sat, eur, usd...)
            fee_percent: Exchange fee, positive means the customer pays more
            primary: Preferred price provider
            secondary: Second price provider

        Returns:
            Amount in the mint's smallest unit (sats for a sat mint, msats
            for an msat mint, cents for a fiat mint)

        Raises:
            ValidationError: If the amount is not a decimal number
            RateUnavailableError: If a needed rate cannot be obtained
        """
        value = _to_decimal(amount)
        request_currency = normalize_unit(request_currency)
        mint_unit = normalize_unit(mint_unit)

        if request_currency == mint_unit:
            return self.to_smallest_unit(value, mint_unit)

        if request_currency == "MSAT" and mint_unit == "SAT":
            # 1000 msat = 1 sat, rounded up
            mint_amount = (value / 1000).to_integral_value(rounding=ROUND_CEILING)
        else:
            btc_amount = await self._to_btc(value, request_currency, primary, secondary)
            mint_amount = await self._from_btc(btc_amount, mint_unit, primary, secondary)

        fee = Decimal(str(fee_percent))
        if fee != 0:
            mint_amount = _truncate(mint_amount * (1 + fee / 100), 8)

        return self.to_smallest_unit(mint_amount, mint_unit)

    async def convert_mint_unit_to_sats(
        self,
        amount_smallest: int,
        mint_unit: str,
        primary: str | None = None,
        secondary: str | None = None,
    ) -> int:
        """Convert an amount in the mint's smallest unit to satoshis."""
        mint_unit = normalize_unit(mint_unit)
        if mint_unit in ("SAT", "BTC"):
            return int(amount_smallest)
        if mint_unit == "MSAT":
            return math.ceil(int(amount_smallest) / 1000)

        fiat_amount = _truncate(Decimal(int(amount_smallest)) / CENTS_PER_UNIT, 8)
        btc_amount = await self._to_btc(fiat_amount, mint_unit, primary, secondary)
        return int(_truncate(btc_amount * SATS_PER_BTC, 0))

    async def convert_sats_to_mint_unit(
        self,
        sats: int,
        mint_unit: str,
        primary: str | None = None,
        secondary: str | None = None,
    ) -> int:
        """Convert satoshis to the mint's smallest unit."""
        mint_unit = normalize_unit(mint_unit)
        if mint_unit in ("SAT", "BTC"):
            return int(sats)
        if mint_unit == "MSAT":
            return int(sats) * 1000

        btc_amount = _truncate(Decimal(int(sats)) / SATS_PER_BTC, 8)
        fiat_amount = await self._from_btc(btc_amount, mint_unit, primary, secondary)
        return int(_truncate(fiat_amount * CENTS_PER_UNIT, 0))

    async def sats_to_fiat(self, sats: int, currency: str) -> Decimal | None:
        """Fiat value of ``sats`` for display, None for non-fiat or no rate."""
        if normalize_unit(currency) in NON_FIAT:
            return None
        price = await self.get_btc_price(currency)
        if price is None:
            return None
        btc_amount = _truncate(Decimal(int(sats)) / SATS_PER_BTC, 8)
        return _truncate(btc_amount * price, 2)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    async def is_stale(self, currency: str) -> bool:
        """True when no cached rate exists or it is older than the stale TTL."""
        return await self.cache.get(currency, max_age=self.stale_ttl) is None

    async def get_rate_age(self, currency: str) -> int | None:
        entry = await self.cache.get(currency)
        return entry.age() if entry is not None else None

    async def get_cached_provider(self, currency: str) -> str | None:
        entry = await self.cache.get(currency)
        return entry.provider if entry is not None else None

    def available_providers(self) -> list[str]:
        return list(self.providers)

    async def get_rate_info(self, currency: str) -> dict[str, Any]:
        """Get information about the cached rate and providers."""
        entry = await self.cache.get(currency)
        return {
            "currency": currency.upper(),
            "rate": entry.rate if entry else None,
            "provider": entry.provider if entry else None,
            "timestamp": entry.timestamp if entry else None,
            "age_seconds": entry.age() if entry else None,
            "is_fresh": entry.is_fresh(self.cache_ttl) if entry else False,
            "is_stale": entry is None or not entry.is_fresh(self.stale_ttl),
            "providers": self.available_providers(),
            "cache_ttl": self.cache_ttl,
            "stale_ttl": self.stale_ttl,
        }

    async def refresh_rates(
        self,
        currencies: list[str],
        primary: str | None = None,
        secondary: str | None = None,
    ) -> dict[str, str | None]:
        """Re-fetch rates whose cache entry is no longer fresh.

        Returns:
            Mapping of currency to the provider now cached (None if unavailable)
        """
        refreshed: dict[str, str | None] = {}
        for currency in {c.strip().lower() for c in currencies}:
            if currency.upper() in NON_FIAT:
                continue
            price = await self.get_btc_price(currency, primary, secondary)
            refreshed[currency] = (
                await self.get_cached_provider(currency) if price is not None else None
            )
        logger.info("rates_refreshed", currencies=sorted(refreshed), at=int(time.time()))
        return refreshed

    async def close(self) -> None:
        """Close all provider connections."""
        for provider in self.providers.values():
            await provider.close()


def create_conversion_service(
    settings: Settings,
    cache: RateCache | None = None,
) -> CurrencyConversionService:
    """Factory function to create the conversion service from settings."""
    return CurrencyConversionService(
        providers=create_price_providers(settings),
        cache=cache,
        cache_ttl_seconds=settings.rate_cache_ttl_seconds,
        stale_ttl_seconds=settings.rate_stale_ttl_seconds,
    )
