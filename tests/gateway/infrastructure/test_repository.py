"""Tests for the gateway repositories."""

import time

import pytest

from cashupay.gateway.domain.enums import InvoiceStatus
from cashupay.gateway.domain.models import Invoice, Webhook, WebhookDelivery
from cashupay.gateway.infrastructure.repository import (
    ConfigRepository,
    InvoiceRepository,
    WebhookDeliveryRepository,
    WebhookRepository,
)


def make_invoice(store, **overrides) -> Invoice:
    now = int(time.time())
    values = dict(
        store_id=store.id,
        amount="1000",
        currency="SAT",
        amount_sats=1000,
        quote_id="q-1",
        created_time=now,
        expiration_time=now + 600,
    )
    values.update(overrides)
    return Invoice(**values)


class TestInvoiceRepository:
    @pytest.fixture
    def repo(self, db_session):
        return InvoiceRepository(db_session)

    def test_compare_and_set_transitions_once(self, repo, store):
        invoice = repo.save(make_invoice(store))

        first = repo.transition_status(invoice.id, InvoiceStatus.PROCESSING, [InvoiceStatus.NEW])
        second = repo.transition_status(invoice.id, InvoiceStatus.PROCESSING, [InvoiceStatus.NEW])

        assert first is True
        assert second is False
        assert repo.refresh(invoice).status == "Processing"

    def test_transition_sets_additional_status(self, repo, store):
        invoice = repo.save(make_invoice(store))

        repo.transition_status(
            invoice.id, InvoiceStatus.INVALID, [InvoiceStatus.NEW], additional_status="Marked"
        )

        repo.refresh(invoice)
        assert invoice.status == "Invalid"
        assert invoice.additional_status == "Marked"

    def test_find_by_store_filters_and_pages(self, repo, store):
        now = int(time.time())
        for i in range(5):
            repo.save(make_invoice(store, created_time=now - i, quote_id=f"q-{i}"))
        repo.save(make_invoice(store, status="Settled", created_time=now + 10, quote_id="q-s"))

        assert len(repo.find_by_store(store.id)) == 6
        assert [i.quote_id for i in repo.find_by_store(store.id, limit=2)] == ["q-s", "q-0"]
        assert [i.quote_id for i in repo.find_by_store(store.id, status="Settled")] == ["q-s"]
        assert len(repo.find_by_store(store.id, limit=10, offset=4)) == 2

    def test_find_expired_new(self, repo, store):
        now = int(time.time())
        expired = repo.save(make_invoice(store, expiration_time=now - 1))
        repo.save(make_invoice(store))
        repo.save(make_invoice(store, status="Processing", expiration_time=now - 1))

        assert [i.id for i in repo.find_expired_new(now)] == [expired.id]

    def test_find_pollable_never_polled_first(self, repo, store):
        now = int(time.time())
        recent = repo.save(make_invoice(store, last_polled_at=now - 5))
        old = repo.save(make_invoice(store, last_polled_at=now - 100))
        never = repo.save(make_invoice(store))
        repo.save(make_invoice(store, quote_id=None))
        repo.save(make_invoice(store, expiration_time=now - 1))

        pollable = repo.find_pollable(now, min_interval=30, limit=10)

        assert [i.id for i in pollable] == [never.id, old.id]
        assert recent.id not in [i.id for i in pollable]

    def test_find_pollable_respects_limit(self, repo, store):
        for i in range(4):
            repo.save(make_invoice(store, quote_id=f"q-{i}"))
        assert len(repo.find_pollable(int(time.time()), 30, limit=3)) == 3

    def test_mark_polled(self, repo, store):
        invoice = repo.save(make_invoice(store))
        repo.mark_polled(invoice.id, 12345)
        assert repo.refresh(invoice).last_polled_at == 12345

    def test_distinct_currencies(self, repo, store):
        repo.save(make_invoice(store, currency="EUR"))
        repo.save(make_invoice(store, currency="EUR"))
        repo.save(make_invoice(store, currency="USD"))
        assert sorted(repo.distinct_currencies()) == ["EUR", "USD"]


class TestWebhookDeliveryRepository:
    def test_delete_oldest_keeps_newest(self, db_session, store):
        webhook = WebhookRepository(db_session).save(
            Webhook(store_id=store.id, url="https://merchant.example.com/hook")
        )
        repo = WebhookDeliveryRepository(db_session)
        for i in range(5):
            repo.add(
                WebhookDelivery(
                    webhook_id=webhook.id,
                    event_type="InvoiceCreated",
                    payload="{}",
                    status_code=200,
                    created_time=1000 + i,
                )
            )

        deleted = repo.delete_oldest(keep=2)

        assert deleted == 3
        assert [d.created_time for d in repo.find_by_webhook(webhook.id)] == [1004, 1003]


class TestConfigRepository:
    def test_get_set_delete(self, db_session):
        repo = ConfigRepository(db_session)

        assert repo.get("missing", "fallback") == "fallback"
        repo.set("last_proof_sync", 100)
        repo.set("last_proof_sync", 200)
        assert repo.get("last_proof_sync") == 200

        repo.delete("last_proof_sync")
        assert repo.get("last_proof_sync") is None

    def test_find_by_prefix(self, db_session):
        repo = ConfigRepository(db_session)
        repo.set("rate_eur", {"rate": 1})
        repo.set("rate_usd", {"rate": 2})
        repo.set("internal_background_key", "k")

        assert set(repo.find_by_prefix("rate_")) == {"rate_eur", "rate_usd"}
