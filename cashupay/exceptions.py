"""Standardized exception hierarchy for CashuPay.

All exceptions carry a human-readable message plus structured context so they
can be logged with structlog without losing detail.

Usage:
    from cashupay.exceptions import ValidationError, RecordNotFoundError

    try:
        service.update_status(invoice_id, "Invalid")
    except ValidationError as e:
        logger.error("status_update_rejected", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class CashuPayError(Exception):
    """Base exception for all CashuPay errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Input Errors
# =============================================================================


class ValidationError(CashuPayError):
    """Raised when input validation fails.

    Surfaced immediately to the caller, never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        if constraint:
            context["constraint"] = constraint
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class InvoiceStateError(ValidationError):
    """Raised when a requested status change violates the invoice lifecycle.

    Example: invalidating an invoice that is already Settled.
    """

    def __init__(
        self,
        message: str,
        *,
        invoice_id: str | None = None,
        current_state: str | None = None,
        attempted_action: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if invoice_id:
            context["invoice_id"] = invoice_id
        if current_state:
            context["current_state"] = current_state
        if attempted_action:
            context["attempted_action"] = attempted_action
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class ConfigurationError(CashuPayError):
    """Raised when application or store configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        if expected:
            context["expected"] = expected
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Database & Persistence Errors
# =============================================================================


class DatabaseError(CashuPayError):
    """Base class for database-related errors."""


class RecordNotFoundError(DatabaseError):
    """Raised when a store, invoice, webhook or delivery does not exist."""

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: int | str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = str(entity_id)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Conversion Errors
# =============================================================================


class ConversionError(CashuPayError):
    """Raised when an amount cannot be converted between units."""


class RateUnavailableError(ConversionError):
    """Raised when no provider and no cached rate can price a currency."""

    def __init__(self, message: str, *, currency: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if currency:
            context["currency"] = currency
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# External Integration Errors
# =============================================================================


class IntegrationError(CashuPayError):
    """Base class for external service integration errors."""


class MintError(IntegrationError):
    """Raised when the ecash mint rejects or cannot serve a quote request."""

    def __init__(self, message: str, *, mint_url: str | None = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if mint_url:
            context["mint_url"] = mint_url
        kwargs["context"] = context
        super().__init__(message, **kwargs)


__all__ = [
    "CashuPayError",
    "ValidationError",
    "InvoiceStateError",
    "ConfigurationError",
    "DatabaseError",
    "RecordNotFoundError",
    "ConversionError",
    "RateUnavailableError",
    "IntegrationError",
    "MintError",
]
