"""Subscription lifecycle reconciliation.

| Event          | Precondition                 | Transition                                  |
|----------------|------------------------------|---------------------------------------------|
| created        | ledger claim is new          | mirror row + profile premium/status/period  |
| updated        | mirror row exists            | mirror row + profile status/period/renew    |
| deleted        | mirror row exists            | profile free/cancelled, mirror canceled     |
| invoice paid   | subscription ref, row exists | profile premium/active                      |
| invoice failed | subscription ref, row exists | profile past_due (tier untouched)           |

Missing mirror rows are ordering gaps: the created event may still be in
flight, so the handler fails and Stripe redelivers later.

Profile writes after "created" only apply while the profile is still linked
to the event's subscription; a deleted subscription unlinks it, so a late
invoice.paid cannot resurrect a cancelled entitlement.
"""

import psycopg2

from holdingspace.domain.errors import MalformedEventError, OrderingGapError
from holdingspace.domain.events import (
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
)
from holdingspace.domain.outcome import Outcome
from holdingspace.infra.db import txn
from holdingspace.infra.repositories.profiles_repository import (
    activate_subscription,
    downgrade_to_free,
    mark_past_due,
    mirror_subscription,
    reassert_premium,
)
from holdingspace.infra.repositories.stripe_events_repository import (
    mark_failed,
    mark_processed,
    record_if_new,
)
from holdingspace.infra.repositories.subscriptions_repository import (
    get_subscription,
    mark_subscription_canceled,
    update_subscription,
    upsert_subscription,
)
from holdingspace.infra.time import utc_now
from holdingspace.observability.logging import get_logger
from holdingspace.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

# Stripe spells it "canceled"; profiles use "cancelled".
_PROFILE_STATUS = {"canceled": "cancelled"}


def profile_status(stripe_status: str) -> str:
    """Map a Stripe subscription status onto the profile vocabulary."""
    return _PROFILE_STATUS.get(stripe_status, stripe_status)


def _log(message: str, event_id: str, subscription_id: str | None, **fields) -> None:
    logger.info(
        message,
        extra={
            "extra_fields": safe_log_context(
                event_id_prefix=id_prefix(event_id),
                subscription_id_prefix=id_prefix(subscription_id),
                **fields,
            )
        },
    )


def _require_mirror(cur, subscription_id: str) -> dict:
    record = get_subscription(cur, stripe_subscription_id=subscription_id)
    if record is None:
        raise OrderingGapError(f"subscription {subscription_id} not found")
    return record


def _record_failure(event: SubscriptionCreated, exc: Exception) -> None:
    """Store the failure reason on the ledger entry (separate transaction)."""
    try:
        with txn() as cur:
            mark_failed(
                cur,
                event_id=event.event_id,
                event_type=event.event_type,
                reason=f"{type(exc).__name__}: {exc}",
            )
    except (psycopg2.Error, RuntimeError):
        # The original error is re-raised by the caller; this only loses
        # the diagnostic column.
        logger.exception(
            "failed to record ledger failure",
            extra={"extra_fields": safe_log_context(event_id_prefix=id_prefix(event.event_id))},
        )


def handle_subscription_created(event: SubscriptionCreated) -> Outcome:
    """Mirror a new subscription and grant premium, at most once per event.

    The ledger claim, the mirror upsert, the profile update and the
    processed flag commit in one transaction. On failure everything rolls
    back, the reason is recorded, and the entry stays claimable for the
    redelivery.
    """
    sub: SubscriptionSnapshot = event.subscription
    if not sub.user_id:
        raise MalformedEventError("subscription without user_id metadata")

    try:
        with txn() as cur:
            claim = record_if_new(
                cur,
                event_id=event.event_id,
                event_type=event.event_type,
                payload=event.audit_payload,
            )
            if not claim.is_new:
                _log("duplicate subscription.created ignored", event.event_id, sub.subscription_id)
                return Outcome.DUPLICATE

            upsert_subscription(
                cur,
                user_id=sub.user_id,
                stripe_subscription_id=sub.subscription_id,
                stripe_customer_id=sub.customer_id,
                stripe_price_id=sub.price_id,
                status=sub.status,
                current_period_start=sub.current_period_start,
                current_period_end=sub.current_period_end,
                cancel_at_period_end=sub.cancel_at_period_end,
                amount=sub.amount,
                currency=sub.currency,
            )

            profile_found = activate_subscription(
                cur,
                user_id=sub.user_id,
                status=profile_status(sub.status),
                stripe_subscription_id=sub.subscription_id,
                started_at=sub.current_period_start,
                ends_at=sub.current_period_end,
                auto_renew=not sub.cancel_at_period_end,
            )
            if not profile_found:
                logger.warning(
                    "subscription created for unknown profile",
                    extra={"extra_fields": safe_log_context(user_id=sub.user_id)},
                )

            mark_processed(cur, event_id=event.event_id)
    except Exception as exc:
        _record_failure(event, exc)
        raise

    _log(
        "subscription created",
        event.event_id,
        sub.subscription_id,
        user_id=sub.user_id,
        status=sub.status,
        attempt=claim.attempt,
    )
    return Outcome.PROCESSED


def handle_subscription_updated(event: SubscriptionUpdated) -> Outcome:
    sub = event.subscription

    with txn() as cur:
        record = _require_mirror(cur, sub.subscription_id)

        record_updated = update_subscription(
            cur,
            stripe_subscription_id=sub.subscription_id,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
            cancel_at_period_end=sub.cancel_at_period_end,
            cancelled_at=sub.canceled_at,
        )
        linked = mirror_subscription(
            cur,
            user_id=record["user_id"],
            stripe_subscription_id=sub.subscription_id,
            status=profile_status(sub.status),
            ends_at=sub.current_period_end,
            auto_renew=not sub.cancel_at_period_end,
            cancelled_at=sub.canceled_at,
        )

    _log(
        "subscription updated",
        event.event_id,
        sub.subscription_id,
        status=sub.status,
        record_updated=record_updated,
        profile_linked=linked,
    )
    return Outcome.PROCESSED


def handle_subscription_deleted(event: SubscriptionDeleted) -> Outcome:
    sub = event.subscription

    with txn() as cur:
        record = _require_mirror(cur, sub.subscription_id)

        downgraded = downgrade_to_free(
            cur,
            user_id=record["user_id"],
            stripe_subscription_id=sub.subscription_id,
        )
        mark_subscription_canceled(
            cur,
            stripe_subscription_id=sub.subscription_id,
            cancelled_at=sub.canceled_at or utc_now(),
        )

    _log(
        "subscription deleted",
        event.event_id,
        sub.subscription_id,
        user_id=record["user_id"],
        profile_downgraded=downgraded,
    )
    return Outcome.PROCESSED


def handle_invoice_paid(event: InvoicePaid) -> Outcome:
    """Defensive re-assertion of premium/active on a renewal payment."""
    if not event.subscription_id:
        # One-time invoice, nothing subscription-related to reconcile.
        return Outcome.IGNORED

    with txn() as cur:
        record = _require_mirror(cur, event.subscription_id)
        linked = reassert_premium(
            cur,
            user_id=record["user_id"],
            stripe_subscription_id=event.subscription_id,
        )

    _log("invoice paid", event.event_id, event.subscription_id, profile_linked=linked)
    return Outcome.PROCESSED


def handle_invoice_payment_failed(event: InvoicePaymentFailed) -> Outcome:
    if not event.subscription_id:
        return Outcome.IGNORED

    with txn() as cur:
        record = _require_mirror(cur, event.subscription_id)
        linked = mark_past_due(
            cur,
            user_id=record["user_id"],
            stripe_subscription_id=event.subscription_id,
        )

    _log("invoice payment failed", event.event_id, event.subscription_id, profile_linked=linked)
    return Outcome.PROCESSED
