"""Domain entities for the invoice pipeline.

Entities:
- Have identity (prefixed random hex id)
- Mutable lifecycle
- Mapped to database tables via SQLAlchemy
"""

import secrets
import time
from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ...storage.database.base import Base
from .enums import AdditionalStatus, InvoiceStatus


def generate_id(prefix: str = "") -> str:
    """Generate a random id such as ``inv_3f9c...`` (24 hex chars)."""
    value = secrets.token_hex(12)
    return f"{prefix}_{value}" if prefix else value


def timestamp() -> int:
    """Current unix timestamp in seconds."""
    return int(time.time())


class Store(Base):
    """Merchant store with its own mint and wallet seed."""

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("store"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Mint configuration (required for the store to accept invoices)
    mint_url: Mapped[str | None] = mapped_column(String(500))
    mint_unit: Mapped[str] = mapped_column(String(10), nullable=False, default="sat")
    seed_phrase: Mapped[str | None] = mapped_column(Text)
    backup_mint_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Exchange settings
    exchange_fee_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    price_provider_primary: Mapped[str] = mapped_column(
        String(30), nullable=False, default="coingecko"
    )
    price_provider_secondary: Mapped[str | None] = mapped_column(String(30), default="binance")

    invoices: Mapped[list["Invoice"]] = relationship(
        back_populates="store", cascade="all, delete-orphan", passive_deletes=True
    )
    webhooks: Mapped[list["Webhook"]] = relationship(
        back_populates="store", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, name='{self.name}', mint_unit='{self.mint_unit}')>"

    @property
    def is_configured(self) -> bool:
        """A store can issue invoices once it has a mint and seed material."""
        return bool(self.mint_url) and bool(self.seed_phrase)

    @property
    def mint_urls(self) -> list[str]:
        """Primary mint followed by the backups, without duplicates."""
        urls: list[str] = []
        for url in [self.mint_url, *(self.backup_mint_urls or [])]:
            if url and url not in urls:
                urls.append(url)
        return urls


class Invoice(Base):
    """Payment request tracked from creation to settlement."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("inv"))
    store_id: Mapped[str] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.NEW.value, index=True
    )
    additional_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AdditionalStatus.NONE.value
    )

    # Amount as requested by the client plus its mint-unit equivalent
    amount: Mapped[str] = mapped_column(String(50), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    amount_sats: Mapped[int] = mapped_column(Integer, nullable=False)
    exchange_rate: Mapped[float | None] = mapped_column(Float)

    # Mint quote
    quote_id: Mapped[str | None] = mapped_column(String(200), index=True)
    bolt11: Mapped[str | None] = mapped_column(Text)
    mint_url: Mapped[str | None] = mapped_column(String(500))  # Mint that issued the quote

    # "metadata" is reserved on declarative classes
    invoice_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    checkout_config: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    created_time: Mapped[int] = mapped_column(Integer, nullable=False, default=timestamp)
    expiration_time: Mapped[int] = mapped_column(Integer, nullable=False)
    last_polled_at: Mapped[int | None] = mapped_column(Integer)

    store: Mapped[Store] = relationship(back_populates="invoices")

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, status='{self.status}', "
            f"amount='{self.amount} {self.currency}', amount_sats={self.amount_sats})>"
        )

    def is_expired(self, now: int | None = None) -> bool:
        """Whether the payment window has elapsed."""
        return (now if now is not None else timestamp()) > self.expiration_time

    @property
    def status_enum(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)


class Webhook(Base):
    """Merchant endpoint subscribed to invoice events."""

    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("wh"))
    store_id: Mapped[str] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    secret: Mapped[str] = mapped_column(
        String(64), nullable=False, default=lambda: secrets.token_hex(32)
    )
    # Empty list means every event
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    store: Mapped[Store] = relationship(back_populates="webhooks")
    deliveries: Mapped[list["WebhookDelivery"]] = relationship(
        back_populates="webhook", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Webhook(id={self.id}, url='{self.url}', enabled={self.enabled})>"

    def accepts(self, event_type: str) -> bool:
        """Whether this webhook wants the given event."""
        return not self.events or event_type in self.events


class WebhookDelivery(Base):
    """Append-only record of one webhook delivery attempt."""

    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("del"))
    webhook_id: Mapped[str] = mapped_column(
        ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_id: Mapped[str | None] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Exact bytes that were signed and sent
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response: Mapped[str | None] = mapped_column(Text)

    original_delivery_id: Mapped[str | None] = mapped_column(String(64))
    is_redelivery: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_time: Mapped[int] = mapped_column(Integer, nullable=False, default=timestamp)

    webhook: Mapped[Webhook] = relationship(back_populates="deliveries")

    def __repr__(self) -> str:
        return (
            f"<WebhookDelivery(id={self.id}, event='{self.event_type}', "
            f"status_code={self.status_code})>"
        )

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status_code < 300


class ConfigEntry(Base):
    """Durable key/value setting (JSON value)."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ConfigEntry(key='{self.key}')>"
