"""Ecash mint client.

Talks to a Cashu mint's bolt11 mint-quote endpoints over HTTP. Minting the
ecash itself (blinded messages, proof storage) belongs to the wallet library
and is reached through an injected redeemer.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ...exceptions import MintError
from ...utils.logging import get_logger
from ..domain.enums import QuoteState
from ..domain.models import Store
from ..domain.value_objects import MintQuote

logger = get_logger(__name__)

# (mint_url, quote_id, amount) -> True once the proofs are minted and stored
QuoteRedeemer = Callable[[str, str, int], Awaitable[bool]]


class MintWalletProtocol:
    """Protocol defining the wallet interface used by the invoice pipeline."""

    mint_url: str

    async def create_quote(self, amount: int, unit: str) -> MintQuote:
        """Request a Lightning invoice from the mint for ``amount`` units."""
        raise NotImplementedError("Subclasses must implement create_quote")

    async def check_quote_status(self, quote_id: str) -> QuoteState:
        """Get the current state of a mint quote."""
        raise NotImplementedError("Subclasses must implement check_quote_status")

    async def claim_quote(self, quote_id: str, amount: int) -> bool:
        """Mint and store the ecash of a paid quote."""
        raise NotImplementedError("Subclasses must implement claim_quote")

    async def close(self) -> None:
        """Release client resources."""
        return None


class CashuMintClient(MintWalletProtocol):
    """HTTP client for a Cashu mint (NUT-04 bolt11 quotes)."""

    def __init__(
        self,
        mint_url: str,
        unit: str = "sat",
        client: httpx.AsyncClient | None = None,
        redeemer: QuoteRedeemer | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.mint_url = mint_url.rstrip("/")
        self.unit = unit.lower()
        self.redeemer = redeemer
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"Accept": "application/json", "User-Agent": "CashuPay/1.0"},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.mint_url}{path}"
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise MintError(
                f"Mint unreachable: {type(e).__name__}",
                mint_url=self.mint_url,
                original_error=e,
            ) from e

        if response.status_code != 200:
            detail = response.text[:200]
            raise MintError(
                f"Mint returned HTTP {response.status_code}: {detail}",
                mint_url=self.mint_url,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MintError("Mint returned invalid JSON", mint_url=self.mint_url) from e

    async def create_quote(self, amount: int, unit: str | None = None) -> MintQuote:
        if amount <= 0:
            raise MintError("Quote amount must be positive", mint_url=self.mint_url)

        data = await self._request(
            "POST",
            "/v1/mint/quote/bolt11",
            json={"amount": amount, "unit": (unit or self.unit).lower()},
        )
        try:
            quote = MintQuote.from_response(data, mint_url=self.mint_url)
        except ValueError as e:
            raise MintError(f"Malformed mint quote: {e}", mint_url=self.mint_url) from e

        logger.info("mint_quote_created", mint_url=self.mint_url, quote_id=quote.quote_id)
        return quote

    async def check_quote_status(self, quote_id: str) -> QuoteState:
        data = await self._request("GET", f"/v1/mint/quote/bolt11/{quote_id}")

        state = data.get("state")
        if state is None:
            # Older mints only report a "paid" flag
            return QuoteState.PAID if data.get("paid") else QuoteState.UNPAID
        try:
            return QuoteState(str(state).upper())
        except ValueError as e:
            raise MintError(f"Unknown quote state: {state}", mint_url=self.mint_url) from e

    async def claim_quote(self, quote_id: str, amount: int) -> bool:
        if self.redeemer is None:
            logger.debug("mint_claim_skipped_no_redeemer", quote_id=quote_id)
            return False
        return await self.redeemer(self.mint_url, quote_id, amount)

    async def close(self) -> None:
        await self.client.aclose()


WalletFactory = Callable[[Store, str | None], MintWalletProtocol]


class MintWalletRegistry:
    """Creates and caches one wallet per store, mint and unit."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        redeemer: QuoteRedeemer | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.client = client
        self.redeemer = redeemer
        self.timeout_seconds = timeout_seconds
        self._wallets: dict[str, MintWalletProtocol] = {}

    def __call__(self, store: Store, mint_url: str | None = None) -> MintWalletProtocol:
        return self.get_wallet(store, mint_url)

    def get_wallet(self, store: Store, mint_url: str | None = None) -> MintWalletProtocol:
        mint_url = mint_url or store.mint_url
        if not mint_url or not store.seed_phrase:
            raise MintError("Store wallet not configured", mint_url=mint_url)

        cache_key = f"{store.id}|{mint_url}|{store.mint_unit}"
        if cache_key not in self._wallets:
            self._wallets[cache_key] = CashuMintClient(
                mint_url,
                unit=store.mint_unit,
                client=self.client,
                redeemer=self.redeemer,
                timeout_seconds=self.timeout_seconds,
            )
        return self._wallets[cache_key]

    async def close(self) -> None:
        for wallet in self._wallets.values():
            await wallet.close()
        self._wallets.clear()
