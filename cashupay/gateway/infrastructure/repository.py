"""Repository implementations for gateway entities.

Provides data access abstraction following the Repository pattern.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from cashupay.gateway.domain.enums import InvoiceStatus
from cashupay.gateway.domain.models import (
    ConfigEntry,
    Invoice,
    Store,
    Webhook,
    WebhookDelivery,
)
from cashupay.storage.database.base import get_session, utcnow


class StoreRepository:
    """Repository for Store entities."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def save(self, store: Store) -> Store:
        """Save or update a store."""
        self.session.add(store)
        self.session.commit()
        return store

    def find_by_id(self, store_id: str) -> Store | None:
        return self.session.get(Store, store_id)

    def find_all(self) -> list[Store]:
        stmt = select(Store).order_by(Store.created_at)
        return list(self.session.execute(stmt).scalars())

    def delete(self, store: Store) -> None:
        """Delete a store together with its invoices and webhooks."""
        self.session.delete(store)
        self.session.commit()


class InvoiceRepository:
    """Repository for Invoice entities."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def save(self, invoice: Invoice) -> Invoice:
        """Save or update an invoice."""
        self.session.add(invoice)
        self.session.commit()
        return invoice

    def find_by_id(self, invoice_id: str) -> Invoice | None:
        return self.session.get(Invoice, invoice_id)

    def refresh(self, invoice: Invoice) -> Invoice:
        """Reload an invoice from the database."""
        self.session.refresh(invoice)
        return invoice

    def find_by_store(
        self,
        store_id: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Invoice]:
        """Find store invoices, newest first."""
        stmt = select(Invoice).where(Invoice.store_id == store_id)
        if status is not None:
            stmt = stmt.where(Invoice.status == status)
        stmt = (
            stmt.order_by(Invoice.created_time.desc(), Invoice.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.execute(stmt).scalars())

    def transition_status(
        self,
        invoice_id: str,
        new_status: InvoiceStatus | str,
        expected: Iterable[InvoiceStatus | str],
        additional_status: str | None = None,
    ) -> bool:
        """Compare-and-set the invoice status.

        The row is only updated while its status is one of ``expected``.

        Returns:
            True if this call changed the row
        """
        values: dict[str, Any] = {"status": str(new_status), "updated_at": utcnow()}
        if additional_status is not None:
            values["additional_status"] = additional_status

        stmt = (
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status.in_([str(s) for s in expected]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def mark_polled(self, invoice_id: str, polled_at: int) -> None:
        stmt = (
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(last_polled_at=polled_at)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.commit()

    def find_expired_new(self, now: int) -> list[Invoice]:
        """New invoices whose payment window has elapsed."""
        stmt = select(Invoice).where(
            Invoice.status == InvoiceStatus.NEW.value,
            Invoice.expiration_time < now,
        )
        return list(self.session.execute(stmt).scalars())

    def find_pollable(self, now: int, min_interval: int, limit: int) -> list[Invoice]:
        """New invoices with a quote that are due for a poll.

        Never-polled invoices come first, then the least recently polled.
        """
        never_polled_first = case((Invoice.last_polled_at.is_(None), 0), else_=1)
        stmt = (
            select(Invoice)
            .where(
                Invoice.status == InvoiceStatus.NEW.value,
                Invoice.quote_id.is_not(None),
                Invoice.expiration_time > now,
                (Invoice.last_polled_at.is_(None)) | (now - Invoice.last_polled_at >= min_interval),
            )
            .order_by(never_polled_first, Invoice.last_polled_at.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def find_processing_before(self, created_before: int) -> list[Invoice]:
        """Processing invoices created before the given unix time."""
        stmt = select(Invoice).where(
            Invoice.status == InvoiceStatus.PROCESSING.value,
            Invoice.created_time < created_before,
        )
        return list(self.session.execute(stmt).scalars())

    def distinct_currencies(self) -> list[str]:
        stmt = select(Invoice.currency).distinct()
        return [row for row in self.session.execute(stmt).scalars()]


class WebhookRepository:
    """Repository for Webhook entities."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def save(self, webhook: Webhook) -> Webhook:
        """Save or update a webhook."""
        self.session.add(webhook)
        self.session.commit()
        return webhook

    def find_by_id(self, webhook_id: str) -> Webhook | None:
        return self.session.get(Webhook, webhook_id)

    def find_by_store(self, store_id: str) -> list[Webhook]:
        stmt = select(Webhook).where(Webhook.store_id == store_id).order_by(Webhook.created_at)
        return list(self.session.execute(stmt).scalars())

    def find_enabled_by_store(self, store_id: str) -> list[Webhook]:
        stmt = (
            select(Webhook)
            .where(Webhook.store_id == store_id, Webhook.enabled.is_(True))
            .order_by(Webhook.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def delete(self, webhook: Webhook) -> None:
        self.session.delete(webhook)
        self.session.commit()


class WebhookDeliveryRepository:
    """Repository for WebhookDelivery entities (append-only)."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Insert a delivery record."""
        self.session.add(delivery)
        self.session.commit()
        return delivery

    def find_by_id(self, delivery_id: str) -> WebhookDelivery | None:
        return self.session.get(WebhookDelivery, delivery_id)

    def find_by_webhook(self, webhook_id: str, limit: int = 20) -> list[WebhookDelivery]:
        """Most recent deliveries of a webhook first."""
        stmt = (
            select(WebhookDelivery)
            .where(WebhookDelivery.webhook_id == webhook_id)
            .order_by(WebhookDelivery.created_time.desc(), WebhookDelivery.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def count(self) -> int:
        return self.session.execute(select(func.count(WebhookDelivery.id))).scalar_one()

    def delete_oldest(self, keep: int) -> int:
        """Delete every delivery beyond the ``keep`` most recent ones.

        Returns:
            Number of deleted rows
        """
        newest = (
            select(WebhookDelivery.id)
            .order_by(WebhookDelivery.created_time.desc(), WebhookDelivery.created_at.desc())
            .limit(keep)
        )
        keep_ids = list(self.session.execute(newest).scalars())
        stmt = delete(WebhookDelivery).where(WebhookDelivery.id.not_in(keep_ids))
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        self.session.commit()
        return result.rowcount or 0


class ConfigRepository:
    """Key/value access to ConfigEntry rows."""

    def __init__(self, session: Session | None = None):
        self.session = session or get_session()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.session.get(ConfigEntry, key)
        return entry.value if entry is not None else default

    def set(self, key: str, value: Any) -> None:
        entry = self.session.get(ConfigEntry, key)
        if entry is None:
            self.session.add(ConfigEntry(key=key, value=value))
        else:
            entry.value = value
        self.session.commit()

    def delete(self, key: str) -> None:
        entry = self.session.get(ConfigEntry, key)
        if entry is not None:
            self.session.delete(entry)
            self.session.commit()

    def find_by_prefix(self, prefix: str) -> dict[str, Any]:
        stmt = select(ConfigEntry).where(ConfigEntry.key.startswith(prefix))
        return {entry.key: entry.value for entry in self.session.execute(stmt).scalars()}
