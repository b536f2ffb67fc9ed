"""Invoice creation and payment reconciliation service."""

from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from ....exceptions import ConfigurationError, MintError, RecordNotFoundError, ValidationError
from ....storage.database.base import get_session
from ....utils.config import Settings, get_settings
from ....utils.logging import get_logger, log_invoice_transition
from ...domain.enums import InvoiceStatus, QuoteState, WebhookEventType
from ...domain.models import Invoice, Store, timestamp
from ...domain.state_machine import (
    TRANSITIONS,
    events_for,
    plan_transitions,
    validate_manual_status,
)
from ...infrastructure.mint_client import MintWalletProtocol, MintWalletRegistry, WalletFactory
from ...infrastructure.repository import InvoiceRepository, StoreRepository
from .conversion_service import NON_FIAT, CurrencyConversionService, normalize_unit
from .webhook_dispatcher import WebhookDispatcher

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


class InvoiceService:
    """Service for creating invoices and moving them through their lifecycle.

    Status changes are compare-and-set updates, so when several callers
    observe the same payment only one of them changes the row and fires the
    webhooks.
    """

    def __init__(
        self,
        conversion: CurrencyConversionService,
        wallet_factory: WalletFactory,
        dispatcher: WebhookDispatcher | None = None,
        session: Session | None = None,
        invoice_expiration_seconds: int = 900,
        base_url: str = "",
    ):
        """Initialize the invoice service.

        Args:
            conversion: Amount conversion service
            wallet_factory: Returns the mint wallet for a store (and mint URL)
            dispatcher: Webhook dispatcher (events are not sent when None)
            session: Database session shared by the repositories
            invoice_expiration_seconds: Lifetime used when the mint gives no expiry
            base_url: Public base URL used for checkout links
        """
        self.invoice_repo = InvoiceRepository(session)
        self.store_repo = StoreRepository(self.invoice_repo.session)
        self.conversion = conversion
        self.wallet_factory = wallet_factory
        self.dispatcher = dispatcher
        self.invoice_expiration_seconds = invoice_expiration_seconds
        self.base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_amount(amount: Any) -> str:
        if amount is None or str(amount).strip() == "":
            raise ValidationError("Amount is required", field="amount")
        text = str(amount).strip()
        try:
            value = Decimal(text)
        except InvalidOperation as e:
            raise ValidationError("Amount must be a decimal number", field="amount", value=text) from e
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be positive", field="amount", value=text)
        return text

    def _get_store(self, store_id: str) -> Store:
        store = self.store_repo.find_by_id(store_id)
        if store is None:
            raise RecordNotFoundError("Store not found", entity_type="store", entity_id=store_id)
        return store

    async def create_invoice(
        self,
        store_id: str,
        amount: str | Decimal | int,
        currency: str = "SAT",
        metadata: dict[str, Any] | None = None,
        checkout: dict[str, Any] | None = None,
    ) -> Invoice:
        """Create an invoice backed by a mint quote.

        Args:
            store_id: Store the invoice belongs to
            amount: Requested amount as a decimal string
            currency: Currency of ``amount`` (fiat code, BTC, SAT or MSAT)
            metadata: Merchant metadata echoed in webhooks
            checkout: Checkout options (redirectURL, redirectAutomatically)

        Returns:
            The new invoice in status New

        Raises:
            ValidationError: If the amount is missing or not positive
            RecordNotFoundError: If the store does not exist
            ConfigurationError: If the store has no mint or seed
            ConversionError: If the amount cannot be converted
            MintError: If no configured mint returned a quote
        """
        amount_text = self._validate_amount(amount)
        currency = (currency or "SAT").strip().upper()

        store = self._get_store(store_id)
        if not store.is_configured:
            raise ConfigurationError(
                "Store not configured - mint and seed phrase required",
                setting="mint_url",
                context={"store_id": store_id},
            )

        primary = store.price_provider_primary
        secondary = store.price_provider_secondary

        amount_in_mint_unit = await self.conversion.convert_to_mint_unit(
            amount_text,
            currency,
            store.mint_unit,
            fee_percent=store.exchange_fee_percent or 0,
            primary=primary,
            secondary=secondary,
        )
        if amount_in_mint_unit <= 0:
            raise ValidationError(
                "Amount is below the smallest payable unit", field="amount", value=amount_text
            )

        exchange_rate = None
        unit = normalize_unit(currency)
        if unit not in NON_FIAT and unit != normalize_unit(store.mint_unit):
            price = await self.conversion.get_btc_price(currency, primary, secondary)
            exchange_rate = float(price) if price is not None else None

        quote = None
        used_mint_url = None
        last_error: Exception | None = None
        for mint_url in store.mint_urls:
            try:
                wallet = self.wallet_factory(store, mint_url)
                quote = await wallet.create_quote(amount_in_mint_unit, store.mint_unit)
                used_mint_url = mint_url
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    "mint_quote_failed",
                    store_id=store_id,
                    mint_url=mint_url,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if quote is None:
            raise MintError(
                "Failed to get mint quote from all configured mints. "
                f"Last error: {last_error if last_error else 'Unknown'}",
                mint_url=store.mint_url,
                original_error=last_error,
            )

        now = timestamp()
        invoice = Invoice(
            store_id=store_id,
            status=InvoiceStatus.NEW.value,
            amount=amount_text,
            currency=currency,
            amount_sats=amount_in_mint_unit,
            exchange_rate=exchange_rate,
            quote_id=quote.quote_id,
            bolt11=quote.request,
            mint_url=used_mint_url,
            invoice_metadata=metadata,
            checkout_config=checkout,
            created_time=now,
            expiration_time=quote.expiry or (now + self.invoice_expiration_seconds),
        )
        self.invoice_repo.save(invoice)

        logger.info(
            "invoice_created",
            invoice_id=invoice.id,
            store_id=store_id,
            amount=amount_text,
            currency=currency,
            amount_in_mint_unit=amount_in_mint_unit,
            mint_unit=store.mint_unit,
            mint_url=used_mint_url,
        )

        await self._fire(invoice, WebhookEventType.INVOICE_CREATED)
        return invoice

    def get_invoice(self, invoice_id: str, store_id: str | None = None) -> Invoice:
        invoice = self.invoice_repo.find_by_id(invoice_id)
        if invoice is None or (store_id is not None and invoice.store_id != store_id):
            raise RecordNotFoundError(
                "Invoice not found", entity_type="invoice", entity_id=invoice_id
            )
        return invoice

    def list_invoices(
        self,
        store_id: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Invoice]:
        """List store invoices, newest first (at most 100 per page)."""
        if status is not None:
            try:
                status = InvoiceStatus(status).value
            except ValueError as e:
                raise ValidationError("Unknown invoice status", field="status", value=status) from e
        return self.invoice_repo.find_by_store(
            store_id,
            status=status,
            limit=max(1, min(limit, MAX_PAGE_SIZE)),
            offset=max(0, offset),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _fire(self, invoice: Invoice, event_type: WebhookEventType) -> None:
        if self.dispatcher is None:
            return
        await self.dispatcher.fire_event(invoice.store_id, event_type, invoice)

    async def _transition(
        self,
        invoice: Invoice,
        target: InvoiceStatus,
        source: str,
        expected: frozenset[InvoiceStatus] | list[InvoiceStatus] | None = None,
        additional_status: str | None = None,
    ) -> bool:
        """Compare-and-set ``invoice`` into ``target`` and fire its events.

        Returns:
            True if this call performed the transition
        """
        from_status = invoice.status
        changed = self.invoice_repo.transition_status(
            invoice.id,
            target,
            expected if expected is not None else TRANSITIONS[target],
            additional_status=additional_status,
        )
        self.invoice_repo.refresh(invoice)
        if not changed:
            logger.debug(
                "invoice_transition_skipped",
                invoice_id=invoice.id,
                target=target.value,
                current=invoice.status,
            )
            return False

        log_invoice_transition(
            logger, invoice.id, invoice.store_id, from_status, target.value, source
        )
        for event_type in events_for(target):
            await self._fire(invoice, event_type)
        return True

    def _wallet_for(self, invoice: Invoice) -> MintWalletProtocol:
        return self.wallet_factory(invoice.store, invoice.mint_url)

    async def _claim_and_settle(self, invoice: Invoice, wallet: MintWalletProtocol) -> bool:
        """Ask the wallet to mint a paid quote and settle on success."""
        try:
            claimed = await wallet.claim_quote(invoice.quote_id, invoice.amount_sats)
        except Exception as e:
            logger.warning(
                "mint_claim_failed",
                invoice_id=invoice.id,
                quote_id=invoice.quote_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        if not claimed:
            return False
        return await self._transition(invoice, InvoiceStatus.SETTLED, source="claim")

    async def _apply_quote_state(
        self, invoice: Invoice, state: QuoteState, wallet: MintWalletProtocol
    ) -> None:
        current = InvoiceStatus(invoice.status)

        if state == QuoteState.PAID and current == InvoiceStatus.PROCESSING:
            # Earlier claim did not complete
            await self._claim_and_settle(invoice, wallet)
            return

        for target in plan_transitions(current, state):
            if not await self._transition(invoice, target, source="poll"):
                return

        if state == QuoteState.PAID and invoice.status == InvoiceStatus.PROCESSING.value:
            await self._claim_and_settle(invoice, wallet)

    async def _poll(self, invoice: Invoice) -> None:
        try:
            wallet = self._wallet_for(invoice)
            state = await wallet.check_quote_status(invoice.quote_id)
        except Exception as e:
            logger.warning(
                "invoice_poll_failed",
                invoice_id=invoice.id,
                quote_id=invoice.quote_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.debug("quote_state_observed", invoice_id=invoice.id, state=state.value)
        await self._apply_quote_state(invoice, state, wallet)

    async def poll_invoice(self, invoice_id: str) -> Invoice | None:
        """Check one invoice against the mint and advance it.

        Safe to call repeatedly; repeated observations change nothing.
        """
        invoice = self.invoice_repo.find_by_id(invoice_id)
        if invoice is None:
            return None
        if not invoice.quote_id or invoice.status_enum.is_final:
            return invoice

        if invoice.status == InvoiceStatus.NEW.value and invoice.is_expired():
            await self._transition(invoice, InvoiceStatus.EXPIRED, source="expiry")
            return invoice

        await self._poll(invoice)
        return invoice

    async def update_status(
        self, invoice_id: str, status: str, store_id: str | None = None
    ) -> Invoice:
        """Apply a merchant-requested status (Invalid or Settled).

        Raises:
            RecordNotFoundError: If the invoice does not exist
            ValidationError: If the requested status is not allowed
            InvoiceStateError: If the invoice cannot take the requested status
        """
        invoice = self.get_invoice(invoice_id, store_id)
        expected = validate_manual_status(invoice.status, status, invoice.id)
        if not expected:
            return invoice

        target = InvoiceStatus(status)
        changed = await self._transition(
            invoice,
            target,
            source="manual",
            expected=expected,
            additional_status="Marked",
        )
        if not changed:
            # Status moved underneath us: judge the request against the new status
            validate_manual_status(invoice.status, status, invoice.id)
        return invoice

    # ------------------------------------------------------------------
    # Batch maintenance
    # ------------------------------------------------------------------

    async def mark_expired_invoices(self) -> int:
        """Expire unpaid invoices past their expiration time.

        Returns:
            Number of invoices this call expired
        """
        expired = 0
        for invoice in self.invoice_repo.find_expired_new(timestamp()):
            if await self._transition(invoice, InvoiceStatus.EXPIRED, source="expiry"):
                expired += 1
        if expired:
            logger.info("invoices_expired", count=expired)
        return expired

    async def poll_pending_quotes(self, min_interval: int = 30, batch_limit: int = 10) -> int:
        """Poll a batch of unpaid quotes, least recently polled first.

        ``last_polled_at`` is stamped before each mint call so a failing
        mint is not hammered.

        Returns:
            Number of invoices polled
        """
        await self.mark_expired_invoices()

        now = timestamp()
        pending = self.invoice_repo.find_pollable(now, min_interval, batch_limit)
        for invoice in pending:
            self.invoice_repo.mark_polled(invoice.id, now)
            await self._poll(invoice)

        if pending:
            logger.info("pending_quotes_polled", count=len(pending))
        return len(pending)

    async def recover_orphaned_invoices(self, grace_seconds: int = 60) -> list[str]:
        """Settle Processing invoices whose quote the mint reports as issued.

        Returns:
            Ids of the invoices settled by this call
        """
        recovered: list[str] = []
        for invoice in self.invoice_repo.find_processing_before(timestamp() - grace_seconds):
            if not invoice.quote_id:
                continue
            try:
                wallet = self._wallet_for(invoice)
                state = await wallet.check_quote_status(invoice.quote_id)
            except Exception as e:
                logger.warning(
                    "orphan_recovery_failed",
                    invoice_id=invoice.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if state == QuoteState.ISSUED:
                settled = await self._transition(
                    invoice, InvoiceStatus.SETTLED, source="recovery"
                )
            elif state == QuoteState.PAID:
                settled = await self._claim_and_settle(invoice, wallet)
            else:
                settled = False

            if settled:
                recovered.append(invoice.id)
                logger.info("orphaned_invoice_recovered", invoice_id=invoice.id)

        return recovered

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def format_for_api(self, invoice: Invoice) -> dict[str, Any]:
        """BTCPay Greenfield invoice representation."""
        result: dict[str, Any] = {
            "id": invoice.id,
            "storeId": invoice.store_id,
            "amount": invoice.amount,
            "currency": invoice.currency,
            "status": invoice.status,
            "additionalStatus": invoice.additional_status,
            "createdTime": invoice.created_time,
            "expirationTime": invoice.expiration_time,
            "checkoutLink": f"{self.base_url}/payment/{invoice.id}",
        }

        if invoice.bolt11:
            result["checkout"] = {
                "paymentMethods": {
                    "BTC-LightningNetwork": {
                        "paymentLink": f"lightning:{invoice.bolt11}",
                        "destination": invoice.bolt11,
                    }
                }
            }

        if invoice.amount_sats:
            result["amountInMintUnit"] = invoice.amount_sats
            result["mintUnit"] = invoice.store.mint_unit

        if invoice.exchange_rate:
            result["exchangeRate"] = {"rate": invoice.exchange_rate, "currency": invoice.currency}

        if invoice.invoice_metadata:
            result["metadata"] = invoice.invoice_metadata

        checkout_config = invoice.checkout_config or {}
        for key in ("redirectURL", "redirectAutomatically"):
            if key in checkout_config:
                result.setdefault("checkout", {})[key] = checkout_config[key]

        return result


def create_invoice_service(
    settings: Settings | None = None,
    session: Session | None = None,
    conversion: CurrencyConversionService | None = None,
    dispatcher: WebhookDispatcher | None = None,
    wallet_factory: WalletFactory | None = None,
) -> InvoiceService:
    """Factory function to create an invoice service.

    Args:
        settings: Application settings (uses get_settings() if None)
        session: Database session shared by the collaborators
        conversion: Conversion service (built from settings if None)
        dispatcher: Webhook dispatcher (built from settings if None)
        wallet_factory: Mint wallet factory (HTTP mint client if None)

    Returns:
        Configured InvoiceService
    """
    from ...infrastructure.rate_cache import PersistentRateCache
    from ...infrastructure.repository import ConfigRepository
    from .conversion_service import create_conversion_service
    from .webhook_dispatcher import create_webhook_dispatcher

    if settings is None:
        settings = get_settings()
    if session is None:
        session = get_session()

    if conversion is None:
        cache = PersistentRateCache(ConfigRepository(session))
        conversion = create_conversion_service(settings, cache=cache)
    if dispatcher is None:
        dispatcher = create_webhook_dispatcher(settings, session=session)
    if wallet_factory is None:
        wallet_factory = MintWalletRegistry(timeout_seconds=settings.mint_timeout_seconds)

    return InvoiceService(
        conversion=conversion,
        wallet_factory=wallet_factory,
        dispatcher=dispatcher,
        session=session,
        invoice_expiration_seconds=settings.invoice_expiration_seconds,
        base_url=settings.base_url,
    )
