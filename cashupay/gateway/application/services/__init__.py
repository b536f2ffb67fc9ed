"""Application services for the invoice pipeline."""

from .background_service import (
    BackgroundTrigger,
    MaintenanceScheduler,
    MaintenanceService,
    create_background_trigger,
    create_maintenance_service,
    run_maintenance,
)
from .conversion_service import CurrencyConversionService, create_conversion_service
from .invoice_service import InvoiceService, create_invoice_service
from .webhook_dispatcher import WebhookDispatcher, create_webhook_dispatcher
from .webhook_service import WebhookService

__all__ = [
    # Conversion
    "CurrencyConversionService",
    "create_conversion_service",
    # Invoices
    "InvoiceService",
    "create_invoice_service",
    # Webhooks
    "WebhookService",
    "WebhookDispatcher",
    "create_webhook_dispatcher",
    # Background maintenance
    "BackgroundTrigger",
    "MaintenanceService",
    "MaintenanceScheduler",
    "create_background_trigger",
    "create_maintenance_service",
    "run_maintenance",
]
