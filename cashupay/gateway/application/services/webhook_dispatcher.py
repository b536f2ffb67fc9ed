"""Webhook delivery.

Sends BTCPay-compatible invoice events to merchant endpoints, signed with
HMAC-SHA256 over the exact body bytes, and records every attempt in the
delivery log.
"""

import hashlib
import hmac
import json
from typing import Any

import httpx
from sqlalchemy.orm import Session

from .... import __version__
from ....exceptions import RecordNotFoundError
from ....utils.config import Settings
from ....utils.logging import get_logger, log_webhook_delivery
from ...domain.enums import WebhookEventType
from ...domain.models import Invoice, Webhook, WebhookDelivery, generate_id, timestamp
from ...infrastructure.repository import WebhookDeliveryRepository, WebhookRepository

logger = get_logger(__name__)

SIGNATURE_HEADER = "BTCPay-Sig"


def calculate_signature(payload: str | bytes, secret: str) -> str:
    """``sha256=<hex>`` HMAC of the payload keyed by the webhook secret."""
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a ``BTCPay-Sig`` header value."""
    return hmac.compare_digest(calculate_signature(payload, secret), signature)


def serialize_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def build_payload(
    delivery_id: str,
    webhook: Webhook,
    event_type: str,
    invoice: Invoice,
    now: int | None = None,
) -> dict[str, Any]:
    """Build the event body. Key order is part of the wire format."""
    payload: dict[str, Any] = {
        "deliveryId": delivery_id,
        "webhookId": webhook.id,
        "originalDeliveryId": delivery_id,
        "isRedelivery": False,
        "type": event_type,
        "timestamp": now if now is not None else timestamp(),
        "storeId": webhook.store_id,
        "invoiceId": invoice.id,
        "invoice": {
            "id": invoice.id,
            "storeId": invoice.store_id,
            "status": invoice.status,
            "additionalStatus": invoice.additional_status or "None",
            "amount": invoice.amount,
            "currency": invoice.currency,
            "amountSats": invoice.amount_sats,
            "createdTime": invoice.created_time,
            "expirationTime": invoice.expiration_time,
        },
    }

    if WebhookEventType(event_type).includes_metadata and invoice.invoice_metadata is not None:
        payload["metadata"] = invoice.invoice_metadata
        payload["invoice"]["metadata"] = invoice.invoice_metadata

    return payload


class WebhookDispatcher:
    """Delivers invoice events to the store's webhooks."""

    def __init__(
        self,
        session: Session | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        response_limit: int = 1000,
    ):
        self.webhook_repo = WebhookRepository(session)
        self.delivery_repo = WebhookDeliveryRepository(self.webhook_repo.session)
        self.timeout_seconds = timeout_seconds
        self.response_limit = response_limit
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0)
        )

    async def fire_event(
        self, store_id: str, event_type: WebhookEventType | str, invoice: Invoice
    ) -> list[WebhookDelivery]:
        """Deliver one event to every enabled webhook that wants it.

        Delivery failures are logged and recorded, never raised.

        Returns:
            Delivery records created by this call
        """
        event = str(event_type)
        deliveries: list[WebhookDelivery] = []

        for webhook in self.webhook_repo.find_enabled_by_store(store_id):
            if not webhook.accepts(event):
                continue
            try:
                deliveries.append(await self._deliver(webhook, event, invoice))
            except Exception as e:
                self.delivery_repo.session.rollback()
                logger.error(
                    "webhook_dispatch_error",
                    webhook_id=webhook.id,
                    invoice_id=invoice.id,
                    event_type=event,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return deliveries

    async def _deliver(self, webhook: Webhook, event_type: str, invoice: Invoice) -> WebhookDelivery:
        delivery_id = generate_id("del")
        body = serialize_payload(build_payload(delivery_id, webhook, event_type, invoice))

        status_code, response = await self._send(webhook.url, body, webhook.secret)

        delivery = self.delivery_repo.add(
            WebhookDelivery(
                id=delivery_id,
                webhook_id=webhook.id,
                invoice_id=invoice.id,
                event_type=event_type,
                payload=body,
                status_code=status_code,
                response=response,
                original_delivery_id=delivery_id,
                is_redelivery=False,
            )
        )
        log_webhook_delivery(logger, delivery_id, webhook.id, event_type, status_code)
        return delivery

    async def _send(self, url: str, body: str, secret: str) -> tuple[int, str]:
        """POST the body once. Returns (status code, response excerpt)."""
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: calculate_signature(body, secret),
            "User-Agent": f"CashuPay/{__version__}",
        }
        try:
            response = await self.client.post(
                url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            return 0, f"Transport error: {type(e).__name__}: {e}"[: self.response_limit]

        return response.status_code, response.text[: self.response_limit]

    async def redeliver(self, delivery_id: str) -> bool:
        """Re-send a recorded delivery with a new delivery id.

        Returns:
            True when the receiver answered 2xx

        Raises:
            RecordNotFoundError: If the delivery or its webhook does not exist
        """
        original = self.delivery_repo.find_by_id(delivery_id)
        if original is None:
            raise RecordNotFoundError(
                "Delivery not found", entity_type="webhook_delivery", entity_id=delivery_id
            )
        webhook = self.webhook_repo.find_by_id(original.webhook_id)
        if webhook is None:
            raise RecordNotFoundError(
                "Webhook not found", entity_type="webhook", entity_id=original.webhook_id
            )

        payload = json.loads(original.payload)
        new_id = generate_id("del")
        root_id = payload.get("originalDeliveryId") or original.id
        payload["deliveryId"] = new_id
        payload["originalDeliveryId"] = root_id
        payload["isRedelivery"] = True
        payload["timestamp"] = timestamp()
        body = serialize_payload(payload)

        status_code, response = await self._send(webhook.url, body, webhook.secret)

        self.delivery_repo.add(
            WebhookDelivery(
                id=new_id,
                webhook_id=webhook.id,
                invoice_id=original.invoice_id,
                event_type=original.event_type,
                payload=body,
                status_code=status_code,
                response=response,
                original_delivery_id=root_id,
                is_redelivery=True,
            )
        )
        log_webhook_delivery(
            logger, new_id, webhook.id, original.event_type, status_code, is_redelivery=True
        )
        return 200 <= status_code < 300

    def prune_deliveries(self, keep: int = 1000) -> int:
        """Delete the oldest delivery records beyond ``keep``."""
        if keep <= 0:
            return 0
        if self.delivery_repo.count() <= keep:
            return 0
        deleted = self.delivery_repo.delete_oldest(keep)
        logger.info("webhook_deliveries_pruned", deleted=deleted, kept=keep)
        return deleted

    async def close(self) -> None:
        await self.client.aclose()


def create_webhook_dispatcher(
    settings: Settings,
    session: Session | None = None,
    client: httpx.AsyncClient | None = None,
) -> WebhookDispatcher:
    """Factory function to create a dispatcher from settings."""
    return WebhookDispatcher(
        session=session,
        client=client,
        timeout_seconds=settings.webhook_timeout_seconds,
        response_limit=settings.webhook_response_limit,
    )
