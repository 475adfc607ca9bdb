"""checkout.session.completed handling.

The session metadata decides what the payment was for:
- type=organizer_verification: a meetup-organizer application fee.
- anything else: a store purchase, fulfilled by fulfill_order().
"""

from holdingspace.domain.errors import MalformedEventError, OrderingGapError
from holdingspace.domain.events import (
    PURPOSE_ORGANIZER_VERIFICATION,
    CheckoutCompleted,
)
from holdingspace.domain.fulfillment import fulfill_order
from holdingspace.domain.outcome import Outcome
from holdingspace.infra.db import txn
from holdingspace.infra.repositories.organizer_applications_repository import (
    mark_application_paid,
)
from holdingspace.infra.time import utc_now
from holdingspace.observability.logging import get_logger
from holdingspace.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)


def _complete_organizer_payment(event: CheckoutCompleted) -> Outcome:
    if not event.application_id:
        raise MalformedEventError("organizer checkout session without application_id")

    with txn() as cur:
        found = mark_application_paid(
            cur,
            application_id=event.application_id,
            payment_intent_id=event.payment_intent_id,
            paid_at=utc_now(),
        )

    if not found:
        raise OrderingGapError(f"organizer application {event.application_id} not found")

    logger.info(
        "organizer application payment completed",
        extra={
            "extra_fields": safe_log_context(
                application_id=event.application_id,
                event_id_prefix=id_prefix(event.event_id),
            )
        },
    )
    return Outcome.PROCESSED


def handle_checkout_completed(event: CheckoutCompleted) -> Outcome:
    """Reconcile a completed checkout session.

    Raises:
        MalformedEventError: Session metadata lacks application_id/order_id.
        OrderingGapError: Referenced application/order not found.
        FulfillmentError: Granting purchased goods failed.
    """
    if event.purpose == PURPOSE_ORGANIZER_VERIFICATION:
        return _complete_organizer_payment(event)

    if not event.order_id:
        raise MalformedEventError("checkout session without order_id")

    fulfill_order(
        order_id=event.order_id,
        payment_intent_id=event.payment_intent_id,
        event_id=event.event_id,
    )
    return Outcome.PROCESSED
