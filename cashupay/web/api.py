"""HTTP API (BTCPay Greenfield-shaped).

Invoice and webhook endpoints scoped per store, the maintenance endpoint
hit by the background self-trigger, and a health check.
"""

import hmac
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .. import __version__
from ..exceptions import (
    CashuPayError,
    ConfigurationError,
    ConversionError,
    MintError,
    RecordNotFoundError,
    ValidationError,
)
from ..gateway.application.services.background_service import (
    BackgroundTrigger,
    MaintenanceScheduler,
    create_background_trigger,
    run_maintenance,
)
from ..gateway.application.services.conversion_service import CurrencyConversionService
from ..gateway.application.services.invoice_service import InvoiceService
from ..gateway.application.services.webhook_dispatcher import WebhookDispatcher
from ..gateway.application.services.webhook_service import WebhookService
from ..gateway.domain.models import Store
from ..gateway.infrastructure.mint_client import MintWalletRegistry, WalletFactory
from ..gateway.infrastructure.rate_cache import PersistentRateCache
from ..gateway.infrastructure.rate_provider import PriceProvider, create_price_providers
from ..gateway.infrastructure.repository import ConfigRepository, StoreRepository
from ..storage.database.base import get_db, init_db
from ..utils.config import Settings, get_settings
from ..utils.logging import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

# (exception class, HTTP status, error code); first match wins
ERROR_MAP: list[tuple[type[CashuPayError], int, str]] = [
    (ValidationError, 400, "validation-error"),
    (RecordNotFoundError, 404, "not-found"),
    (ConfigurationError, 400, "store-not-configured"),
    (ConversionError, 400, "invoice-error"),
    (MintError, 502, "mint-error"),
]


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------


class InvoiceCreateRequest(BaseModel):
    amount: str | int | float | None = None
    currency: str = "SAT"
    metadata: dict[str, Any] | None = None
    checkout: dict[str, Any] | None = None


class InvoiceStatusRequest(BaseModel):
    status: str


class AuthorizedEvents(BaseModel):
    everything: bool = True
    specificEvents: list[str] = Field(default_factory=list)


class WebhookCreateRequest(BaseModel):
    url: str
    enabled: bool = True
    authorizedEvents: AuthorizedEvents = Field(default_factory=AuthorizedEvents)

    def event_list(self) -> list[str]:
        return [] if self.authorizedEvents.everything else self.authorizedEvents.specificEvents


class WebhookUpdateRequest(BaseModel):
    url: str | None = None
    enabled: bool | None = None
    authorizedEvents: AuthorizedEvents | None = None

    def event_list(self) -> list[str] | None:
        if self.authorizedEvents is None:
            return None
        return [] if self.authorizedEvents.everything else self.authorizedEvents.specificEvents


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_conversion_service(
    request: Request, db: Session = Depends(get_db)
) -> CurrencyConversionService:
    settings: Settings = request.app.state.settings
    return CurrencyConversionService(
        providers=request.app.state.price_providers,
        cache=PersistentRateCache(ConfigRepository(db)),
        cache_ttl_seconds=settings.rate_cache_ttl_seconds,
        stale_ttl_seconds=settings.rate_stale_ttl_seconds,
    )


def get_dispatcher(request: Request, db: Session = Depends(get_db)) -> WebhookDispatcher:
    settings: Settings = request.app.state.settings
    return WebhookDispatcher(
        session=db,
        client=request.app.state.http_client,
        timeout_seconds=settings.webhook_timeout_seconds,
        response_limit=settings.webhook_response_limit,
    )


def get_invoice_service(
    request: Request,
    db: Session = Depends(get_db),
    conversion: CurrencyConversionService = Depends(get_conversion_service),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> InvoiceService:
    settings: Settings = request.app.state.settings
    return InvoiceService(
        conversion=conversion,
        wallet_factory=request.app.state.wallet_factory,
        dispatcher=dispatcher,
        session=db,
        invoice_expiration_seconds=settings.invoice_expiration_seconds,
        base_url=settings.base_url,
    )


def get_webhook_service(db: Session = Depends(get_db)) -> WebhookService:
    return WebhookService(db)


def get_trigger(request: Request, db: Session = Depends(get_db)) -> BackgroundTrigger:
    trigger = create_background_trigger(request.app.state.settings, ConfigRepository(db))
    trigger.client = request.app.state.trigger_client
    return trigger


def require_store(store_id: str, db: Session = Depends(get_db)) -> Store:
    store = StoreRepository(db).find_by_id(store_id)
    if store is None:
        raise RecordNotFoundError("Store not found", entity_type="store", entity_id=store_id)
    return store


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------

router = APIRouter(prefix="/api/v1/stores/{store_id}")


@router.post("/invoices")
async def create_invoice(
    store_id: str,
    body: InvoiceCreateRequest,
    service: InvoiceService = Depends(get_invoice_service),
) -> dict[str, Any]:
    invoice = await service.create_invoice(
        store_id,
        body.amount,
        currency=body.currency,
        metadata=body.metadata,
        checkout=body.checkout,
    )
    return service.format_for_api(invoice)


@router.get("/invoices")
async def list_invoices(
    store: Store = Depends(require_store),
    status: str | None = None,
    take: int = Query(50, ge=1, le=100),
    skip: int = Query(0, ge=0),
    service: InvoiceService = Depends(get_invoice_service),
) -> list[dict[str, Any]]:
    invoices = service.list_invoices(store.id, status=status, limit=take, offset=skip)
    return [service.format_for_api(invoice) for invoice in invoices]


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    store_id: str,
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
    trigger: BackgroundTrigger = Depends(get_trigger),
) -> dict[str, Any]:
    invoice = service.get_invoice(invoice_id, store_id)
    await service.poll_invoice(invoice.id)
    await trigger.trigger()
    return service.format_for_api(invoice)


@router.post("/invoices/{invoice_id}/status")
async def update_invoice_status(
    store_id: str,
    invoice_id: str,
    body: InvoiceStatusRequest,
    service: InvoiceService = Depends(get_invoice_service),
) -> dict[str, Any]:
    invoice = await service.update_status(invoice_id, body.status, store_id=store_id)
    return service.format_for_api(invoice)


@router.get("/webhooks")
async def list_webhooks(
    store: Store = Depends(require_store),
    service: WebhookService = Depends(get_webhook_service),
) -> list[dict[str, Any]]:
    return [service.format_for_api(webhook) for webhook in service.list_webhooks(store.id)]


@router.post("/webhooks")
async def create_webhook(
    store_id: str,
    body: WebhookCreateRequest,
    service: WebhookService = Depends(get_webhook_service),
) -> dict[str, Any]:
    webhook = service.create_webhook(
        store_id, body.url, events=body.event_list(), enabled=body.enabled
    )
    return service.format_for_api(webhook, include_secret=True)


@router.get("/webhooks/{webhook_id}")
async def get_webhook(
    store_id: str,
    webhook_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> dict[str, Any]:
    return service.format_for_api(service.get_webhook(webhook_id, store_id))


@router.put("/webhooks/{webhook_id}")
async def update_webhook(
    store_id: str,
    webhook_id: str,
    body: WebhookUpdateRequest,
    service: WebhookService = Depends(get_webhook_service),
) -> dict[str, Any]:
    webhook = service.update_webhook(
        webhook_id,
        store_id=store_id,
        url=body.url,
        events=body.event_list(),
        enabled=body.enabled,
    )
    return service.format_for_api(webhook)


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(
    store_id: str,
    webhook_id: str,
    service: WebhookService = Depends(get_webhook_service),
) -> Response:
    service.delete_webhook(webhook_id, store_id)
    return Response(status_code=200)


@router.get("/webhooks/{webhook_id}/deliveries")
async def list_deliveries(
    store_id: str,
    webhook_id: str,
    count: int = Query(20, ge=1, le=100),
    service: WebhookService = Depends(get_webhook_service),
) -> list[dict[str, Any]]:
    deliveries = service.list_deliveries(webhook_id, store_id, limit=count)
    return [service.format_delivery_for_api(delivery) for delivery in deliveries]


@router.post("/webhooks/{webhook_id}/deliveries/{delivery_id}/redeliver")
async def redeliver(
    store_id: str,
    webhook_id: str,
    delivery_id: str,
    service: WebhookService = Depends(get_webhook_service),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    service.get_webhook(webhook_id, store_id)
    service.get_delivery(delivery_id, webhook_id)
    success = await dispatcher.redeliver(delivery_id)
    return {"deliveryId": delivery_id, "success": success}


# ----------------------------------------------------------------------
# Application factory
# ----------------------------------------------------------------------


def _error_response(exc: CashuPayError) -> JSONResponse:
    for exc_type, status_code, code in ERROR_MAP:
        if isinstance(exc, exc_type):
            return JSONResponse(
                status_code=status_code, content={"code": code, "message": exc.message}
            )
    return JSONResponse(status_code=500, content={"code": "server-error", "message": exc.message})


def create_app(
    settings: Settings | None = None,
    wallet_factory: WalletFactory | None = None,
    price_providers: dict[str, PriceProvider] | None = None,
    http_client: httpx.AsyncClient | None = None,
    trigger_client: httpx.AsyncClient | None = None,
    sweep: Callable[[], Awaitable[dict[str, str]]] | None = None,
    init_database: bool = True,
    enable_scheduler: bool = False,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings (uses get_settings() if None)
        wallet_factory: Mint wallet factory (HTTP mint client if None)
        price_providers: Provider registry (CoinGecko, Binance, Kraken if None)
        http_client: Client used for webhook deliveries
        trigger_client: Client used for the background self-trigger
        sweep: Maintenance coroutine run by /cron (run_maintenance if None)
        init_database: Initialize the database engine on startup
        enable_scheduler: Also run maintenance periodically in-process
    """
    settings = settings or get_settings()
    sweep = sweep or (lambda: run_maintenance(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if init_database:
            init_db(settings.database_url)
        scheduler = None
        if enable_scheduler:
            scheduler = MaintenanceScheduler(sweep, settings.maintenance_interval_seconds)
            await scheduler.start()
        logger.info("api_started", base_url=settings.base_url)
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            for provider in app.state.price_providers.values():
                await provider.close()
            await app.state.http_client.aclose()

    app = FastAPI(title="CashuPay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.wallet_factory = wallet_factory or MintWalletRegistry(
        timeout_seconds=settings.mint_timeout_seconds
    )
    app.state.price_providers = price_providers or create_price_providers(settings)
    app.state.http_client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(settings.webhook_timeout_seconds, connect=5.0)
    )
    app.state.trigger_client = trigger_client
    app.state.sweep = sweep

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.exception_handler(CashuPayError)
    async def handle_cashupay_error(request: Request, exc: CashuPayError) -> JSONResponse:
        logger.warning(
            "api_error",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return _error_response(exc)

    @app.api_route("/cron", methods=["GET", "POST"])
    async def cron(
        background_tasks: BackgroundTasks,
        internal: int = 0,
        key: str | None = None,
        x_cron_key: str | None = Header(None),
        trigger: BackgroundTrigger = Depends(get_trigger),
    ) -> JSONResponse:
        if internal:
            allowed = trigger.verify_internal_key(key)
        elif settings.cron_key:
            provided = key or x_cron_key or ""
            allowed = hmac.compare_digest(settings.cron_key, provided)
        else:
            allowed = True

        if not allowed:
            logger.warning("cron_rejected", internal=bool(internal))
            return JSONResponse(
                status_code=403, content={"code": "forbidden", "message": "Invalid key"}
            )

        background_tasks.add_task(app.state.sweep)
        return JSONResponse(content={"status": "accepted"})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    app.include_router(router)
    return app
