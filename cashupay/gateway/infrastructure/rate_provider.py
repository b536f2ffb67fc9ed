"""BTC price providers.

Each provider returns the price of one bitcoin in a requested currency, or
None when the currency is unsupported or the API gives no usable answer.
Transport errors propagate; the conversion service treats them as
"provider unavailable".
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from ...utils.config import Settings
from ...utils.logging import get_logger

logger = get_logger(__name__)


def _to_price(value: Any) -> Decimal | None:
    """Parse a JSON price into a positive Decimal."""
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return price if price > 0 else None


class PriceProvider(ABC):
    """Abstract base class for BTC price providers."""

    name: str = ""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={"Accept": "application/json", "User-Agent": "CashuPay/1.0"},
        )

    @abstractmethod
    async def get_btc_price(self, currency: str) -> Decimal | None:
        """Get the price of 1 BTC in ``currency``."""
        pass

    def supports(self, currency: str) -> bool:
        """Whether the provider can price ``currency`` at all."""
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()


class CoinGeckoProvider(PriceProvider):
    """CoinGecko simple price API (free tier, optional demo key)."""

    name = "coingecko"

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        super().__init__(client, timeout)
        self.api_key = api_key
        self.base_url = "https://api.coingecko.com/api/v3"

    async def get_btc_price(self, currency: str) -> Decimal | None:
        currency = currency.lower()
        params = {"ids": "bitcoin", "vs_currencies": currency}
        if self.api_key:
            params["x_cg_demo_api_key"] = self.api_key

        response = await self.client.get(f"{self.base_url}/simple/price", params=params)
        if response.status_code != 200:
            logger.debug("coingecko_bad_status", status_code=response.status_code)
            return None

        data = response.json()
        return _to_price(data.get("bitcoin", {}).get(currency))


class BinanceProvider(PriceProvider):
    """Binance ticker price API."""

    name = "binance"

    SYMBOLS = {
        "eur": "BTCEUR",
        "usd": "BTCUSDT",
        "usdt": "BTCUSDT",
        "usdc": "BTCUSDC",
        "gbp": "BTCGBP",
        "aud": "BTCAUD",
        "brl": "BTCBRL",
        "try": "BTCTRY",
    }

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self.base_url = "https://api.binance.com/api/v3"

    def supports(self, currency: str) -> bool:
        return currency.lower() in self.SYMBOLS

    async def get_btc_price(self, currency: str) -> Decimal | None:
        symbol = self.SYMBOLS.get(currency.lower())
        if symbol is None:
            return None

        response = await self.client.get(
            f"{self.base_url}/ticker/price", params={"symbol": symbol}
        )
        if response.status_code != 200:
            logger.debug("binance_bad_status", status_code=response.status_code)
            return None

        return _to_price(response.json().get("price"))


class KrakenProvider(PriceProvider):
    """Kraken public ticker API."""

    name = "kraken"

    PAIRS = {
        "eur": "XBTEUR",
        "usd": "XBTUSD",
        "gbp": "XBTGBP",
        "cad": "XBTCAD",
        "jpy": "XBTJPY",
        "aud": "XBTAUD",
        "chf": "XBTCHF",
    }

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self.base_url = "https://api.kraken.com/0/public"

    def supports(self, currency: str) -> bool:
        return currency.lower() in self.PAIRS

    async def get_btc_price(self, currency: str) -> Decimal | None:
        pair = self.PAIRS.get(currency.lower())
        if pair is None:
            return None

        response = await self.client.get(f"{self.base_url}/Ticker", params={"pair": pair})
        if response.status_code != 200:
            logger.debug("kraken_bad_status", status_code=response.status_code)
            return None

        data = response.json()
        if data.get("error"):
            logger.debug("kraken_api_error", errors=data["error"])
            return None

        # Result is keyed by Kraken's own pair name; "c" is [last price, lot volume]
        for pair_data in (data.get("result") or {}).values():
            last_trade = pair_data.get("c") or []
            if last_trade:
                return _to_price(last_trade[0])
        return None


def create_price_providers(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> dict[str, PriceProvider]:
    """Factory function building the default provider registry.

    Order matters: it is the fallback order after a store's own preferences.
    """
    timeout = settings.provider_timeout_seconds
    providers: list[PriceProvider] = [
        CoinGeckoProvider(api_key=settings.coingecko_api_key, client=client, timeout=timeout),
        BinanceProvider(client=client, timeout=timeout),
        KrakenProvider(client=client, timeout=timeout),
    ]
    return {provider.name: provider for provider in providers}
