"""Reconciliation entry point - classify a verified event and dispatch it.

One handler per event variant; the table below is the whole state machine
wiring, each handler testable on its own.
"""

from typing import Callable

from holdingspace.domain.checkout import handle_checkout_completed
from holdingspace.domain.events import (
    CheckoutCompleted,
    ClassifiedEvent,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnsupportedEvent,
    classify,
)
from holdingspace.domain.outcome import Outcome
from holdingspace.domain.subscriptions import (
    handle_invoice_paid,
    handle_invoice_payment_failed,
    handle_subscription_created,
    handle_subscription_deleted,
    handle_subscription_updated,
)
from holdingspace.observability.logging import get_logger
from holdingspace.observability.redaction import id_prefix, safe_log_context
from holdingspace.stripe.webhook import StripeWebhookEvent

logger = get_logger(__name__)


def _ignore_unsupported(event: UnsupportedEvent) -> Outcome:
    logger.info(
        "ignoring unsupported stripe event",
        extra={
            "extra_fields": safe_log_context(
                event_id_prefix=id_prefix(event.event_id),
                event_type=event.event_type,
            )
        },
    )
    return Outcome.IGNORED


HANDLERS: dict[type, Callable[..., Outcome]] = {
    CheckoutCompleted: handle_checkout_completed,
    SubscriptionCreated: handle_subscription_created,
    SubscriptionUpdated: handle_subscription_updated,
    SubscriptionDeleted: handle_subscription_deleted,
    InvoicePaid: handle_invoice_paid,
    InvoicePaymentFailed: handle_invoice_payment_failed,
    UnsupportedEvent: _ignore_unsupported,
}


def dispatch(classified: ClassifiedEvent) -> Outcome:
    """Run the handler registered for a classified event's variant."""
    handler = HANDLERS[type(classified)]
    return handler(classified)


def reconcile(event: StripeWebhookEvent) -> Outcome:
    """Classify and reconcile one verified Stripe event.

    Returns:
        Outcome.PROCESSED, DUPLICATE or IGNORED (all acknowledged with 2xx).

    Raises:
        ReconciliationError subclasses and store errors; the webhook route
        maps them to 4xx/5xx.
    """
    return dispatch(classify(event))
