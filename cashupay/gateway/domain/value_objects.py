"""Domain value objects for the invoice pipeline.

Value Objects:
- Immutable (frozen dataclasses)
- No identity (equality based on attributes)
"""

import time
from dataclasses import dataclass
from typing import Any

from .enums import QuoteState


@dataclass(frozen=True)
class MintQuote:
    """Mint quote returned when requesting a Lightning invoice from a mint."""

    quote_id: str
    request: str  # BOLT-11 payment request
    expiry: int | None  # Unix timestamp, None when the mint gives no expiry
    state: QuoteState = QuoteState.UNPAID
    mint_url: str | None = None

    def __post_init__(self) -> None:
        if not self.quote_id:
            raise ValueError("quote_id is required")
        if not self.request:
            raise ValueError("request is required")

    @classmethod
    def from_response(cls, data: dict[str, Any], mint_url: str | None = None) -> "MintQuote":
        """Build from a ``/v1/mint/quote/bolt11`` response body."""
        expiry = data.get("expiry")
        return cls(
            quote_id=str(data.get("quote", "")),
            request=str(data.get("request", "")),
            expiry=int(expiry) if expiry else None,
            state=QuoteState(str(data.get("state", QuoteState.UNPAID.value)).upper()),
            mint_url=mint_url,
        )


@dataclass(frozen=True)
class CachedRate:
    """BTC price cached for one currency."""

    currency: str
    rate: float
    timestamp: int
    provider: str

    def age(self, now: int | None = None) -> int:
        """Seconds since the rate was fetched."""
        return (now if now is not None else int(time.time())) - self.timestamp

    def is_fresh(self, ttl_seconds: int, now: int | None = None) -> bool:
        return self.age(now) <= ttl_seconds

    def to_dict(self) -> dict[str, Any]:
        return {"rate": self.rate, "timestamp": self.timestamp, "provider": self.provider}

    @classmethod
    def from_dict(cls, currency: str, data: dict[str, Any]) -> "CachedRate":
        return cls(
            currency=currency,
            rate=float(data["rate"]),
            timestamp=int(data.get("timestamp", 0)),
            provider=str(data.get("provider", "unknown")),
        )
