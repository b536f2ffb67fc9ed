"""Tests for the Cashu mint HTTP client."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from cashupay.exceptions import MintError
from cashupay.gateway.domain.enums import QuoteState
from cashupay.gateway.domain.models import Store
from cashupay.gateway.infrastructure.mint_client import CashuMintClient, MintWalletRegistry

MINT_URL = "https://mint.example.com"


def make_client(handler, requests: list | None = None, **kwargs) -> CashuMintClient:
    def record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return CashuMintClient(MINT_URL + "/", client=http, **kwargs)


class TestCreateQuote:
    @pytest.mark.asyncio
    async def test_creates_bolt11_quote(self):
        requests: list[httpx.Request] = []
        body = {"quote": "q-123", "request": "lnbc10u1abc", "expiry": 1700000600, "state": "UNPAID"}
        client = make_client(lambda r: httpx.Response(200, json=body), requests)

        quote = await client.create_quote(1000, "sat")

        assert quote.quote_id == "q-123"
        assert quote.request == "lnbc10u1abc"
        assert quote.expiry == 1700000600
        assert quote.mint_url == MINT_URL
        assert requests[0].method == "POST"
        assert str(requests[0].url) == f"{MINT_URL}/v1/mint/quote/bolt11"
        assert json.loads(requests[0].content) == {"amount": 1000, "unit": "sat"}

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = make_client(lambda r: httpx.Response(400, json={"detail": "unit not supported"}))

        with pytest.raises(MintError) as exc_info:
            await client.create_quote(1000, "eur")

        assert "400" in exc_info.value.message
        assert exc_info.value.context["mint_url"] == MINT_URL

    @pytest.mark.asyncio
    async def test_unreachable_mint(self):
        def fail(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(MintError):
            await make_client(fail).create_quote(1000, "sat")

    @pytest.mark.asyncio
    async def test_malformed_quote(self):
        client = make_client(lambda r: httpx.Response(200, json={"request": "lnbc1"}))

        with pytest.raises(MintError, match="Malformed"):
            await client.create_quote(1000, "sat")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = make_client(lambda r: httpx.Response(200, text="<html>"))

        with pytest.raises(MintError, match="invalid JSON"):
            await client.create_quote(1000, "sat")

    @pytest.mark.asyncio
    async def test_non_positive_amount(self):
        requests: list[httpx.Request] = []
        client = make_client(lambda r: httpx.Response(200), requests)

        with pytest.raises(MintError):
            await client.create_quote(0, "sat")
        assert requests == []


class TestQuoteStatus:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["UNPAID", "PAID", "ISSUED"])
    async def test_state(self, state):
        requests: list[httpx.Request] = []
        client = make_client(
            lambda r: httpx.Response(200, json={"quote": "q-1", "state": state}), requests
        )

        assert await client.check_quote_status("q-1") == QuoteState(state)
        assert requests[0].url.path == "/v1/mint/quote/bolt11/q-1"

    @pytest.mark.asyncio
    async def test_legacy_paid_flag(self):
        client = make_client(lambda r: httpx.Response(200, json={"quote": "q-1", "paid": True}))
        assert await client.check_quote_status("q-1") == QuoteState.PAID

    @pytest.mark.asyncio
    async def test_unknown_state(self):
        client = make_client(lambda r: httpx.Response(200, json={"state": "PENDING_SOMETHING"}))
        with pytest.raises(MintError):
            await client.check_quote_status("q-1")


class TestClaimQuote:
    @pytest.mark.asyncio
    async def test_without_redeemer(self):
        client = make_client(lambda r: httpx.Response(200))
        assert await client.claim_quote("q-1", 1000) is False

    @pytest.mark.asyncio
    async def test_delegates_to_redeemer(self):
        redeemer = AsyncMock(return_value=True)
        client = make_client(lambda r: httpx.Response(200), redeemer=redeemer)

        assert await client.claim_quote("q-1", 1000) is True
        redeemer.assert_awaited_once_with(MINT_URL, "q-1", 1000)


class TestMintWalletRegistry:
    def test_caches_wallet_per_store_and_mint(self):
        registry = MintWalletRegistry()
        store = Store(id="store_1", name="a", mint_url=MINT_URL, seed_phrase="seed", mint_unit="sat")

        first = registry(store)
        assert registry(store) is first
        assert registry(store, "https://backup.example.com") is not first
        assert first.mint_url == MINT_URL
        assert first.unit == "sat"

    def test_unconfigured_store(self):
        registry = MintWalletRegistry()
        with pytest.raises(MintError):
            registry(Store(id="store_2", name="b", mint_url=MINT_URL))

    @pytest.mark.asyncio
    async def test_close_clears(self):
        registry = MintWalletRegistry()
        store = Store(id="store_1", name="a", mint_url=MINT_URL, seed_phrase="seed", mint_unit="sat")
        registry(store)

        await registry.close()

        assert registry._wallets == {}
