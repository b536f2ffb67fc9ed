"""Tests for background maintenance: self-trigger, sweep and scheduler."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from cashupay.gateway.application.services.background_service import (
    INTERNAL_KEY,
    LAST_SYNC_KEY,
    BackgroundTrigger,
    MaintenanceScheduler,
    MaintenanceService,
)
from cashupay.gateway.infrastructure.repository import ConfigRepository


@pytest.fixture
def config_repo(db_session):
    return ConfigRepository(db_session)


@pytest.fixture
def trigger(config_repo):
    return BackgroundTrigger(config_repo, base_url="https://pay.example.com/", sync_interval_seconds=300)


@pytest.fixture
def maintenance(invoice_service, trigger):
    return MaintenanceService(invoice_service, trigger, delivery_retention=50)


class TestBackgroundTrigger:
    def test_internal_key_generated_once(self, trigger, config_repo):
        assert trigger.verify_internal_key("anything") is False

        key = trigger.get_internal_key()

        assert len(key) == 32
        assert trigger.get_internal_key() == key
        assert config_repo.get(INTERNAL_KEY) == key
        assert trigger.verify_internal_key(key) is True
        assert trigger.verify_internal_key("wrong") is False
        assert trigger.verify_internal_key(None) is False

    def test_sync_throttle(self, trigger, config_repo):
        assert trigger.should_sync() is True

        trigger.mark_synced()

        assert trigger.should_sync() is False
        assert trigger.time_since_last_sync() < 5
        assert config_repo.get(LAST_SYNC_KEY) is not None

    def test_cron_url(self, trigger):
        assert trigger.cron_url == "https://pay.example.com/cron"

    @pytest.mark.asyncio
    async def test_trigger_swallows_timeout(self, config_repo):
        requests = []

        def handler(request):
            requests.append(request)
            raise httpx.ReadTimeout("no answer", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        trigger = BackgroundTrigger(config_repo, base_url="https://pay.example.com", client=client)

        await trigger.trigger()

        [request] = requests
        assert request.url.path == "/cron"
        assert request.url.params["internal"] == "1"
        assert request.url.params["key"] == trigger.get_internal_key()


class TestMaintenanceService:
    @pytest.mark.asyncio
    async def test_runs_every_task(self, maintenance, mock_dispatcher):
        mock_dispatcher.prune_deliveries.return_value = 3

        results = await maintenance.run()

        assert list(results) == [
            "poll_quotes",
            "expire_invoices",
            "recover_orphaned",
            "refresh_rates",
            "sync",
            "cleanup_webhooks",
        ]
        assert all(outcome.startswith("ok") for outcome in results.values())
        assert results["cleanup_webhooks"] == "ok: 3"
        mock_dispatcher.prune_deliveries.assert_called_once_with(keep=50)

    @pytest.mark.asyncio
    async def test_sync_is_throttled(self, maintenance):
        first = await maintenance.run()
        second = await maintenance.run()

        assert "sync" in first
        assert "sync" not in second

    @pytest.mark.asyncio
    async def test_failing_task_does_not_stop_others(self, maintenance, invoice_service):
        invoice_service.poll_pending_quotes = AsyncMock(side_effect=RuntimeError("mint down"))

        results = await maintenance.run()

        assert results["poll_quotes"] == "error: mint down"
        assert results["sync"] == "error: mint down"
        assert results["expire_invoices"].startswith("ok")
        assert results["cleanup_webhooks"].startswith("ok")

    @pytest.mark.asyncio
    async def test_refreshes_tracked_fiat_currencies(
        self, db_session, maintenance, price_providers, store
    ):
        store.mint_unit = "eur"
        db_session.commit()

        results = await maintenance.run()

        assert results["refresh_rates"] == "ok: 1"
        assert price_providers["coingecko"].calls == ["eur"]


class TestMaintenanceScheduler:
    @pytest.mark.asyncio
    async def test_start_stop(self):
        sweep = AsyncMock(return_value={})
        scheduler = MaintenanceScheduler(sweep, interval_seconds=0.01)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.runs >= 1
        assert sweep.await_count >= 1

    @pytest.mark.asyncio
    async def test_sweep_errors_keep_loop_alive(self):
        sweep = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = MaintenanceScheduler(sweep, interval_seconds=0.01)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.runs >= 2
