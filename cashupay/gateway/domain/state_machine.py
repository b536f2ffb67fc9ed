"""Invoice lifecycle rules.

Transition table, the webhook events fired per transition, and the checks
applied to status changes requested explicitly by a merchant.
"""

from ...exceptions import InvoiceStateError, ValidationError
from .enums import InvoiceStatus, QuoteState, WebhookEventType

# target status -> statuses it may be reached from in the polling path
TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PROCESSING: frozenset({InvoiceStatus.NEW}),
    InvoiceStatus.SETTLED: frozenset({InvoiceStatus.PROCESSING}),
    InvoiceStatus.EXPIRED: frozenset({InvoiceStatus.NEW}),
    InvoiceStatus.INVALID: frozenset({InvoiceStatus.NEW, InvoiceStatus.PROCESSING}),
}

# Events fired, in order, when an invoice enters a status
TRANSITION_EVENTS: dict[InvoiceStatus, tuple[WebhookEventType, ...]] = {
    InvoiceStatus.PROCESSING: (
        WebhookEventType.INVOICE_RECEIVED_PAYMENT,
        WebhookEventType.INVOICE_PROCESSING,
    ),
    InvoiceStatus.SETTLED: (WebhookEventType.INVOICE_SETTLED,),
    InvoiceStatus.EXPIRED: (WebhookEventType.INVOICE_EXPIRED,),
    InvoiceStatus.INVALID: (WebhookEventType.INVOICE_INVALID,),
}

MANUAL_STATUSES = frozenset({InvoiceStatus.INVALID, InvoiceStatus.SETTLED})


def can_transition(current: InvoiceStatus | str, target: InvoiceStatus | str) -> bool:
    """Whether the polling path may move an invoice from ``current`` to ``target``."""
    return InvoiceStatus(current) in TRANSITIONS.get(InvoiceStatus(target), frozenset())


def events_for(target: InvoiceStatus | str) -> tuple[WebhookEventType, ...]:
    """Webhook events fired when an invoice enters ``target``."""
    return TRANSITION_EVENTS.get(InvoiceStatus(target), ())


def plan_transitions(current: InvoiceStatus | str, observed: QuoteState) -> list[InvoiceStatus]:
    """Statuses to walk through after observing a mint quote state.

    A quote seen ISSUED while the invoice is still New goes through
    Processing first, so Settled is never entered directly from New.
    """
    current = InvoiceStatus(current)
    if observed == QuoteState.PAID and current == InvoiceStatus.NEW:
        return [InvoiceStatus.PROCESSING]
    if observed == QuoteState.ISSUED:
        if current == InvoiceStatus.NEW:
            return [InvoiceStatus.PROCESSING, InvoiceStatus.SETTLED]
        if current == InvoiceStatus.PROCESSING:
            return [InvoiceStatus.SETTLED]
    return []


def validate_manual_status(
    current: InvoiceStatus | str,
    requested: str,
    invoice_id: str | None = None,
) -> list[InvoiceStatus]:
    """Check a merchant-requested status change.

    Returns the statuses the change may be applied from (empty when the
    invoice is already in the requested status and nothing needs doing).

    Raises:
        ValidationError: If the requested status is not Invalid or Settled
        InvoiceStateError: If the invoice cannot move to the requested status
    """
    try:
        target = InvoiceStatus(requested)
    except ValueError as e:
        raise ValidationError(
            "Status must be 'Invalid' or 'Settled'",
            field="status",
            value=requested,
            original_error=e,
        ) from e
    if target not in MANUAL_STATUSES:
        raise ValidationError(
            "Status must be 'Invalid' or 'Settled'", field="status", value=requested
        )

    current = InvoiceStatus(current)
    if target == InvoiceStatus.SETTLED:
        if current == InvoiceStatus.SETTLED:
            return []
        return [status for status in InvoiceStatus if status != InvoiceStatus.SETTLED]

    if current not in TRANSITIONS[InvoiceStatus.INVALID]:
        raise InvoiceStateError(
            f"Cannot mark a {current.value} invoice as Invalid",
            invoice_id=invoice_id,
            current_state=current.value,
            attempted_action="mark_invalid",
        )
    return sorted(TRANSITIONS[InvoiceStatus.INVALID], key=lambda s: s.value)
