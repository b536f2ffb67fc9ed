"""Tests for gateway entities and value objects."""

import time

import pytest

from cashupay.gateway.domain.enums import InvoiceStatus, QuoteState
from cashupay.gateway.domain.models import (
    Invoice,
    Store,
    Webhook,
    WebhookDelivery,
    generate_id,
)
from cashupay.gateway.domain.value_objects import CachedRate, MintQuote


class TestIds:
    def test_prefixed_random_id(self):
        first = generate_id("inv")
        second = generate_id("inv")

        assert first.startswith("inv_")
        assert len(first) == len("inv_") + 24
        assert first != second


class TestStore:
    def test_is_configured_requires_mint_and_seed(self):
        assert not Store(name="a").is_configured
        assert not Store(name="a", mint_url="https://mint").is_configured
        assert Store(name="a", mint_url="https://mint", seed_phrase="seed").is_configured

    def test_mint_urls_primary_first_without_duplicates(self):
        store = Store(
            name="a",
            mint_url="https://mint-a",
            backup_mint_urls=["https://mint-b", "https://mint-a", "https://mint-c"],
        )
        assert store.mint_urls == ["https://mint-a", "https://mint-b", "https://mint-c"]

    def test_delete_cascades_to_invoices_and_webhooks(self, db_session, store):
        db_session.add(
            Invoice(
                store_id=store.id,
                amount="1000",
                currency="SAT",
                amount_sats=1000,
                expiration_time=int(time.time()) + 600,
            )
        )
        db_session.add(Webhook(store_id=store.id, url="https://merchant.example.com/hook"))
        db_session.commit()

        db_session.delete(store)
        db_session.commit()

        assert db_session.query(Invoice).count() == 0
        assert db_session.query(Webhook).count() == 0


class TestInvoice:
    def test_defaults(self, db_session, store):
        invoice = Invoice(
            store_id=store.id,
            amount="10.00",
            currency="EUR",
            amount_sats=20000,
            expiration_time=int(time.time()) + 600,
            invoice_metadata={"orderId": "42"},
        )
        db_session.add(invoice)
        db_session.commit()
        db_session.refresh(invoice)

        assert invoice.id.startswith("inv_")
        assert invoice.status == "New"
        assert invoice.additional_status == "None"
        assert invoice.invoice_metadata == {"orderId": "42"}
        assert invoice.to_dict()["invoice_metadata"] == {"orderId": "42"}

    def test_is_expired(self):
        invoice = Invoice(expiration_time=1000)
        assert invoice.is_expired(now=1001)
        assert not invoice.is_expired(now=1000)

    @pytest.mark.parametrize(
        "status,final",
        [
            (InvoiceStatus.NEW, False),
            (InvoiceStatus.PROCESSING, False),
            (InvoiceStatus.SETTLED, True),
            (InvoiceStatus.EXPIRED, True),
            (InvoiceStatus.INVALID, True),
        ],
    )
    def test_status_enum_is_final(self, status, final):
        invoice = Invoice(status=status.value)

        assert invoice.status_enum is status
        assert invoice.status_enum.is_final is final


class TestWebhook:
    def test_secret_generated(self, db_session, store):
        webhook = Webhook(store_id=store.id, url="https://merchant.example.com/hook")
        db_session.add(webhook)
        db_session.commit()

        assert len(webhook.secret) == 64
        int(webhook.secret, 16)

    def test_empty_events_accepts_everything(self):
        assert Webhook(events=[]).accepts("InvoiceSettled")
        assert Webhook(events=["InvoiceSettled"]).accepts("InvoiceSettled")
        assert not Webhook(events=["InvoiceSettled"]).accepts("InvoiceCreated")

    def test_delivery_succeeded(self):
        assert WebhookDelivery(status_code=204).succeeded
        assert not WebhookDelivery(status_code=0).succeeded
        assert not WebhookDelivery(status_code=500).succeeded


class TestMintQuote:
    def test_from_response(self):
        quote = MintQuote.from_response(
            {"quote": "q1", "request": "lnbc1", "expiry": 1700000000, "state": "unpaid"},
            mint_url="https://mint",
        )
        assert quote.quote_id == "q1"
        assert quote.expiry == 1700000000
        assert quote.state == QuoteState.UNPAID

    def test_missing_quote_id_rejected(self):
        with pytest.raises(ValueError):
            MintQuote.from_response({"request": "lnbc1"})


class TestCachedRate:
    def test_freshness(self):
        rate = CachedRate("eur", 50000.0, timestamp=1000, provider="coingecko")
        assert rate.age(now=1300) == 300
        assert rate.is_fresh(300, now=1300)
        assert not rate.is_fresh(300, now=1301)

    def test_dict_round_trip(self):
        rate = CachedRate("eur", 50000.0, timestamp=1000, provider="kraken")
        assert CachedRate.from_dict("eur", rate.to_dict()) == rate
