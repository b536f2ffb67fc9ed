"""Background maintenance without a mandatory worker process.

Customer-facing requests call ``BackgroundTrigger.trigger()``, which fires a
short self-request at the maintenance endpoint; the endpoint answers at once
and runs ``MaintenanceService.run()`` after the response. Deployments with a
long-lived process can use ``MaintenanceScheduler`` instead.
"""

import asyncio
import hmac
import secrets
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ....storage.session import db_session
from ....utils.config import Settings, get_settings
from ....utils.logging import get_logger
from ...domain.models import timestamp
from ...infrastructure.repository import ConfigRepository, InvoiceRepository, StoreRepository
from .conversion_service import NON_FIAT, normalize_unit
from .invoice_service import InvoiceService, create_invoice_service

logger = get_logger(__name__)

INTERNAL_KEY = "internal_background_key"
LAST_SYNC_KEY = "last_proof_sync"


class BackgroundTrigger:
    """Fire-and-forget self-trigger plus the keys and throttles it relies on."""

    def __init__(
        self,
        config_repo: ConfigRepository,
        base_url: str,
        timeout_seconds: float = 0.1,
        sync_interval_seconds: int = 300,
        client: httpx.AsyncClient | None = None,
    ):
        self.config_repo = config_repo
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.sync_interval_seconds = sync_interval_seconds
        self.client = client

    @property
    def cron_url(self) -> str:
        return f"{self.base_url}/cron"

    async def trigger(self) -> None:
        """Poke the maintenance endpoint without waiting for it.

        Timeouts are the normal outcome and are only logged at debug level.
        """
        params = {"internal": "1", "key": self.get_internal_key()}
        try:
            if self.client is not None:
                await self.client.get(self.cron_url, params=params, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds, follow_redirects=True
                ) as client:
                    await client.get(self.cron_url, params=params)
        except httpx.HTTPError as e:
            logger.debug("background_trigger_sent", outcome=type(e).__name__)

    def get_internal_key(self) -> str:
        """Key authenticating internal self-requests (created on first use)."""
        key = self.config_repo.get(INTERNAL_KEY)
        if not key:
            key = secrets.token_hex(16)
            self.config_repo.set(INTERNAL_KEY, key)
            logger.info("internal_key_generated")
        return key

    def verify_internal_key(self, provided_key: str | None) -> bool:
        stored = self.config_repo.get(INTERNAL_KEY)
        if not stored or not provided_key:
            return False
        return hmac.compare_digest(str(stored), str(provided_key))

    def should_sync(self) -> bool:
        """True when the last full reconciliation is older than the interval."""
        return self.time_since_last_sync() > self.sync_interval_seconds

    def mark_synced(self) -> None:
        self.config_repo.set(LAST_SYNC_KEY, timestamp())

    def time_since_last_sync(self) -> int:
        return timestamp() - int(self.config_repo.get(LAST_SYNC_KEY, 0) or 0)


class MaintenanceService:
    """The maintenance sweep: every task runs even when another one fails."""

    def __init__(
        self,
        invoice_service: InvoiceService,
        trigger: BackgroundTrigger,
        poll_min_interval: int = 30,
        poll_batch_limit: int = 10,
        orphan_grace_seconds: int = 60,
        delivery_retention: int = 1000,
        default_primary: str | None = None,
        default_secondary: str | None = None,
    ):
        self.invoice_service = invoice_service
        self.trigger = trigger
        self.poll_min_interval = poll_min_interval
        self.poll_batch_limit = poll_batch_limit
        self.orphan_grace_seconds = orphan_grace_seconds
        self.delivery_retention = delivery_retention
        self.default_primary = default_primary
        self.default_secondary = default_secondary

    @property
    def conversion(self):
        return self.invoice_service.conversion

    @property
    def dispatcher(self):
        return self.invoice_service.dispatcher

    async def run(self) -> dict[str, str]:
        """Run all maintenance tasks.

        Returns:
            Task name -> outcome ("ok: ..." or "error: ...")
        """
        tasks: list[tuple[str, Callable[[], Awaitable[Any]]]] = [
            ("poll_quotes", self._poll_quotes),
            ("expire_invoices", self._expire_invoices),
            ("recover_orphaned", self._recover_orphaned),
            ("refresh_rates", self._refresh_rates),
        ]
        if self.trigger.should_sync():
            tasks.append(("sync", self._sync))
        tasks.append(("cleanup_webhooks", self._cleanup_webhooks))

        results: dict[str, str] = {}
        for name, task in tasks:
            try:
                outcome = await task()
                results[name] = f"ok: {outcome}"
            except Exception as e:
                results[name] = f"error: {e}"
                logger.error(
                    "maintenance_task_failed",
                    task=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info("maintenance_completed", results=results)
        return results

    async def _poll_quotes(self) -> int:
        return await self.invoice_service.poll_pending_quotes(
            min_interval=self.poll_min_interval, batch_limit=self.poll_batch_limit
        )

    async def _expire_invoices(self) -> int:
        return await self.invoice_service.mark_expired_invoices()

    async def _recover_orphaned(self) -> int:
        recovered = await self.invoice_service.recover_orphaned_invoices(
            grace_seconds=self.orphan_grace_seconds
        )
        return len(recovered)

    def _tracked_currencies(self) -> list[str]:
        session = self.invoice_service.invoice_repo.session
        currencies = set(InvoiceRepository(session).distinct_currencies())
        currencies.update(store.mint_unit for store in StoreRepository(session).find_all())
        return sorted(c for c in currencies if normalize_unit(c) not in NON_FIAT)

    async def _refresh_rates(self) -> int:
        refreshed = await self.conversion.refresh_rates(
            self._tracked_currencies(), self.default_primary, self.default_secondary
        )
        return sum(1 for provider in refreshed.values() if provider is not None)

    async def _sync(self) -> int:
        """Full reconciliation of every open invoice, throttled."""
        polled = await self.invoice_service.poll_pending_quotes(min_interval=0, batch_limit=100)
        recovered = await self.invoice_service.recover_orphaned_invoices(grace_seconds=0)
        self.trigger.mark_synced()
        return polled + len(recovered)

    async def _cleanup_webhooks(self) -> int:
        if self.dispatcher is None:
            return 0
        return self.dispatcher.prune_deliveries(keep=self.delivery_retention)


def create_background_trigger(settings: Settings, config_repo: ConfigRepository) -> BackgroundTrigger:
    """Factory function to create the self-trigger from settings."""
    return BackgroundTrigger(
        config_repo,
        base_url=settings.base_url,
        timeout_seconds=settings.background_trigger_timeout_seconds,
        sync_interval_seconds=settings.sync_interval_seconds,
    )


def create_maintenance_service(
    settings: Settings,
    invoice_service: InvoiceService,
) -> MaintenanceService:
    """Factory function to create the maintenance sweep around an invoice service."""
    config_repo = ConfigRepository(invoice_service.invoice_repo.session)
    return MaintenanceService(
        invoice_service=invoice_service,
        trigger=create_background_trigger(settings, config_repo),
        poll_min_interval=settings.poll_min_interval_seconds,
        poll_batch_limit=settings.poll_batch_limit,
        orphan_grace_seconds=settings.orphan_grace_seconds,
        delivery_retention=settings.webhook_delivery_retention,
        default_primary=settings.default_price_provider_primary,
        default_secondary=settings.default_price_provider_secondary,
    )


async def run_maintenance(settings: Settings | None = None) -> dict[str, str]:
    """Run one sweep with its own database session."""
    settings = settings or get_settings()
    with db_session() as session:
        invoice_service = create_invoice_service(settings, session=session)
        try:
            return await create_maintenance_service(settings, invoice_service).run()
        finally:
            await invoice_service.conversion.close()
            if invoice_service.dispatcher is not None:
                await invoice_service.dispatcher.close()


class MaintenanceScheduler:
    """In-process periodic maintenance loop."""

    def __init__(
        self,
        sweep: Callable[[], Awaitable[dict[str, str]]],
        interval_seconds: float = 60,
    ):
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.runs = 0
        self._is_running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start the maintenance loop."""
        if self._is_running:
            return

        self._is_running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("maintenance_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the maintenance loop."""
        self._is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("maintenance_scheduler_stopped", runs=self.runs)

    async def _loop(self) -> None:
        while self._is_running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(
                    "maintenance_loop_error", error=str(e), error_type=type(e).__name__
                )
            self.runs += 1
            await asyncio.sleep(self.interval_seconds)
