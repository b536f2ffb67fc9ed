"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests: an in-memory
database, stand-ins for the mint wallet and the price feeds, and stores.
"""

import time
from collections.abc import Generator
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cashupay.exceptions import MintError
from cashupay.gateway.application.services.conversion_service import CurrencyConversionService
from cashupay.gateway.application.services.invoice_service import InvoiceService
from cashupay.gateway.application.services.webhook_dispatcher import WebhookDispatcher
from cashupay.gateway.domain.enums import QuoteState
from cashupay.gateway.domain.models import Store
from cashupay.gateway.domain.value_objects import MintQuote
from cashupay.gateway.infrastructure.mint_client import MintWalletProtocol
from cashupay.gateway.infrastructure.rate_cache import RateCache
from cashupay.gateway.infrastructure.rate_provider import PriceProvider
from cashupay.storage.database.base import Base
from cashupay.utils.config import Settings


class StaticPriceProvider(PriceProvider):
    """Price provider answering from a fixed table."""

    def __init__(
        self,
        name: str,
        prices: dict[str, str] | None = None,
        error: Exception | None = None,
    ):
        self.name = name
        self.prices = {k.lower(): Decimal(v) for k, v in (prices or {}).items()}
        self.error = error
        self.calls: list[str] = []

    async def get_btc_price(self, currency: str) -> Decimal | None:
        self.calls.append(currency.lower())
        if self.error is not None:
            raise self.error
        return self.prices.get(currency.lower())

    async def close(self) -> None:
        return None


class FakeMintWallet(MintWalletProtocol):
    """In-memory mint wallet.

    ``state`` is what ``check_quote_status`` reports for every quote;
    ``claim_result`` is what ``claim_quote`` answers.
    """

    def __init__(self, mint_url: str = "https://mint.example.com", expiry: int | None = None):
        self.mint_url = mint_url
        self.expiry = expiry if expiry is not None else int(time.time()) + 600
        self.state = QuoteState.UNPAID
        self.claim_result = False
        self.fail_create = False
        self.created: list[tuple[int, str]] = []
        self.checked: list[str] = []
        self.claimed: list[tuple[str, int]] = []

    async def create_quote(self, amount: int, unit: str) -> MintQuote:
        if self.fail_create:
            raise MintError("Mint unreachable", mint_url=self.mint_url)
        self.created.append((amount, unit))
        return MintQuote(
            quote_id=f"quote-{len(self.created)}",
            request=f"lnbc{amount}n1fake{len(self.created)}",
            expiry=self.expiry,
            mint_url=self.mint_url,
        )

    async def check_quote_status(self, quote_id: str) -> QuoteState:
        self.checked.append(quote_id)
        return self.state

    async def claim_quote(self, quote_id: str, amount: int) -> bool:
        self.claimed.append((quote_id, amount))
        return self.claim_result


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing.

    A single shared connection lets the FastAPI TestClient threads see the
    same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create a database session for testing.

    Each test gets a fresh session with automatic rollback.
    """
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        base_url="http://testserver",
        cron_key=None,
        invoice_expiration_seconds=900,
    )


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def provider_cls():
    """The static provider class, for tests building their own registry."""
    return StaticPriceProvider


@pytest.fixture
def price_providers():
    """CoinGecko stand-in (EUR 50000, USD 55000) then a Binance stand-in."""
    return {
        "coingecko": StaticPriceProvider("coingecko", {"eur": "50000", "usd": "55000"}),
        "binance": StaticPriceProvider("binance", {"eur": "49000", "usd": "54000"}),
    }


@pytest.fixture
def conversion(price_providers) -> CurrencyConversionService:
    return CurrencyConversionService(providers=price_providers, cache=RateCache())


@pytest.fixture
def wallet_cls():
    return FakeMintWallet


@pytest.fixture
def mint_wallet() -> FakeMintWallet:
    return FakeMintWallet()


@pytest.fixture
def wallet_factory(mint_wallet):
    """Wallet factory handing out ``mint_wallet`` and recording the mint asked for."""

    def factory(store, mint_url=None):
        factory.requested.append(mint_url)
        return mint_wallet

    factory.requested = []
    return factory


@pytest.fixture
def mock_dispatcher():
    """Dispatcher double recording fired events."""
    return AsyncMock(spec=WebhookDispatcher)


# =============================================================================
# Stores and services
# =============================================================================


@pytest.fixture
def store(db_session) -> Store:
    """Configured sat-denominated store."""
    store = Store(
        name="Coffee Shop",
        mint_url="https://mint.example.com",
        mint_unit="sat",
        seed_phrase="abandon abandon abandon abandon abandon about",
        backup_mint_urls=[],
        exchange_fee_percent=0.0,
        price_provider_primary="coingecko",
        price_provider_secondary="binance",
    )
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture
def unconfigured_store(db_session) -> Store:
    store = Store(name="Draft Store", mint_unit="sat")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture
def invoice_service(db_session, conversion, wallet_factory, mock_dispatcher) -> InvoiceService:
    return InvoiceService(
        conversion=conversion,
        wallet_factory=wallet_factory,
        dispatcher=mock_dispatcher,
        session=db_session,
        invoice_expiration_seconds=900,
        base_url="https://pay.example.com",
    )
