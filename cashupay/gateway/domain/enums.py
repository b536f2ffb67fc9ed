"""Domain enums for the invoice pipeline."""

from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status.

    Lifecycle:
        New → Processing (mint quote paid)
        New → Expired (time expired, unpaid)
        Processing → Settled (ecash issued)
        New / Processing → Invalid (marked by the merchant)
    """

    NEW = "New"
    PROCESSING = "Processing"
    SETTLED = "Settled"
    EXPIRED = "Expired"
    INVALID = "Invalid"

    def __str__(self) -> str:
        return self.value

    @property
    def is_final(self) -> bool:
        """Whether the polling path can no longer move this invoice."""
        return self in (InvoiceStatus.SETTLED, InvoiceStatus.EXPIRED, InvoiceStatus.INVALID)


class AdditionalStatus(str, Enum):
    """Secondary status shown next to the invoice status."""

    NONE = "None"
    MARKED = "Marked"  # Status set explicitly by the merchant

    def __str__(self) -> str:
        return self.value


class WebhookEventType(str, Enum):
    """Webhook event types."""

    INVOICE_CREATED = "InvoiceCreated"
    INVOICE_RECEIVED_PAYMENT = "InvoiceReceivedPayment"
    INVOICE_PROCESSING = "InvoiceProcessing"
    INVOICE_SETTLED = "InvoiceSettled"
    INVOICE_EXPIRED = "InvoiceExpired"
    INVOICE_INVALID = "InvoiceInvalid"

    def __str__(self) -> str:
        return self.value

    @property
    def includes_metadata(self) -> bool:
        """Whether payloads of this event carry the invoice metadata."""
        return self in (
            WebhookEventType.INVOICE_CREATED,
            WebhookEventType.INVOICE_RECEIVED_PAYMENT,
            WebhookEventType.INVOICE_SETTLED,
        )

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class QuoteState(str, Enum):
    """Mint quote state as reported by the mint."""

    UNPAID = "UNPAID"  # Lightning invoice not paid yet
    PAID = "PAID"  # Paid, ecash not yet issued
    ISSUED = "ISSUED"  # Paid and ecash issued

    def __str__(self) -> str:
        return self.value


class MintUnit(str, Enum):
    """Non-fiat accounting units a mint may use."""

    SAT = "sat"
    MSAT = "msat"
    BTC = "btc"

    def __str__(self) -> str:
        return self.value
