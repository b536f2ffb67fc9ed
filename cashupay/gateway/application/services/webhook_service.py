"""Webhook registration management."""

from typing import Any
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from ....exceptions import RecordNotFoundError, ValidationError
from ....utils.logging import get_logger
from ...domain.enums import WebhookEventType
from ...domain.models import Webhook, WebhookDelivery
from ...infrastructure.repository import (
    StoreRepository,
    WebhookDeliveryRepository,
    WebhookRepository,
)

logger = get_logger(__name__)


def validate_webhook_url(url: str) -> str:
    """Accept absolute http(s) URLs with a host."""
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            "Webhook URL must be an absolute http or https URL",
            field="url",
            value=url,
        )
    return url


def validate_events(events: list[str] | None) -> list[str]:
    """Check event names; an empty list subscribes to everything."""
    if not events:
        return []
    known = set(WebhookEventType.values())
    unknown = [event for event in events if event not in known]
    if unknown:
        raise ValidationError(
            f"Unknown event types: {', '.join(unknown)}",
            field="events",
            value=unknown,
            constraint=", ".join(sorted(known)),
        )
    # Keep order, drop duplicates
    return list(dict.fromkeys(events))


class WebhookService:
    """CRUD for store webhooks and access to their delivery log."""

    def __init__(self, session: Session | None = None):
        self.webhook_repo = WebhookRepository(session)
        self.store_repo = StoreRepository(self.webhook_repo.session)
        self.delivery_repo = WebhookDeliveryRepository(self.webhook_repo.session)

    def create_webhook(
        self,
        store_id: str,
        url: str,
        events: list[str] | None = None,
        enabled: bool = True,
    ) -> Webhook:
        """Register a webhook. The generated secret is only readable here."""
        if self.store_repo.find_by_id(store_id) is None:
            raise RecordNotFoundError("Store not found", entity_type="store", entity_id=store_id)

        webhook = Webhook(
            store_id=store_id,
            url=validate_webhook_url(url),
            events=validate_events(events),
            enabled=enabled,
        )
        self.webhook_repo.save(webhook)
        logger.info("webhook_created", webhook_id=webhook.id, store_id=store_id, url=webhook.url)
        return webhook

    def list_webhooks(self, store_id: str) -> list[Webhook]:
        return self.webhook_repo.find_by_store(store_id)

    def get_webhook(self, webhook_id: str, store_id: str | None = None) -> Webhook:
        webhook = self.webhook_repo.find_by_id(webhook_id)
        if webhook is None or (store_id is not None and webhook.store_id != store_id):
            raise RecordNotFoundError(
                "Webhook not found", entity_type="webhook", entity_id=webhook_id
            )
        return webhook

    def update_webhook(
        self,
        webhook_id: str,
        store_id: str | None = None,
        url: str | None = None,
        events: list[str] | None = None,
        enabled: bool | None = None,
    ) -> Webhook:
        """Update url, events or enabled flag. The secret never changes."""
        webhook = self.get_webhook(webhook_id, store_id)
        if url is not None:
            webhook.url = validate_webhook_url(url)
        if events is not None:
            webhook.events = validate_events(events)
        if enabled is not None:
            webhook.enabled = enabled
        self.webhook_repo.save(webhook)
        logger.info("webhook_updated", webhook_id=webhook.id)
        return webhook

    def delete_webhook(self, webhook_id: str, store_id: str | None = None) -> None:
        webhook = self.get_webhook(webhook_id, store_id)
        self.webhook_repo.delete(webhook)
        logger.info("webhook_deleted", webhook_id=webhook_id)

    def list_deliveries(
        self, webhook_id: str, store_id: str | None = None, limit: int = 20
    ) -> list[WebhookDelivery]:
        self.get_webhook(webhook_id, store_id)
        return self.delivery_repo.find_by_webhook(webhook_id, limit=max(1, min(limit, 100)))

    def get_delivery(self, delivery_id: str, webhook_id: str | None = None) -> WebhookDelivery:
        delivery = self.delivery_repo.find_by_id(delivery_id)
        if delivery is None or (webhook_id is not None and delivery.webhook_id != webhook_id):
            raise RecordNotFoundError(
                "Delivery not found", entity_type="webhook_delivery", entity_id=delivery_id
            )
        return delivery

    @staticmethod
    def format_for_api(webhook: Webhook, include_secret: bool = False) -> dict[str, Any]:
        """BTCPay Greenfield webhook representation."""
        data: dict[str, Any] = {
            "id": webhook.id,
            "enabled": webhook.enabled,
            "automaticRedelivery": False,
            "url": webhook.url,
            "authorizedEvents": {
                "everything": not webhook.events,
                "specificEvents": list(webhook.events or []),
            },
        }
        if include_secret:
            data["secret"] = webhook.secret
        return data

    @staticmethod
    def format_delivery_for_api(delivery: WebhookDelivery) -> dict[str, Any]:
        return {
            "id": delivery.id,
            "timestamp": delivery.created_time,
            "httpCode": delivery.status_code,
            "errorMessage": None if delivery.succeeded else delivery.response,
            "status": "HttpSuccess" if delivery.succeeded else "Failed",
            "eventType": delivery.event_type,
            "invoiceId": delivery.invoice_id,
            "isRedelivery": delivery.is_redelivery,
            "originalDeliveryId": delivery.original_delivery_id,
        }
