"""Event classifier - maps an authenticated Stripe event to a typed variant.

Each supported event kind gets a frozen dataclass carrying only the fields
its handler needs. Kinds outside the closed set classify as UnsupportedEvent
and are acknowledged without side effects, so new entries in Stripe's event
catalogue never cause redelivery loops.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from holdingspace.domain.errors import MalformedEventError
from holdingspace.infra.time import from_unix
from holdingspace.stripe.webhook import StripeWebhookEvent

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

# Checkout session metadata discriminator
PURPOSE_ORGANIZER_VERIFICATION = "organizer_verification"
PURPOSE_STORE_PURCHASE = "store_purchase"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    purpose: str
    order_id: str | None
    application_id: str | None
    payment_intent_id: str | None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Subscription fields mirrored into stripe_subscriptions and profiles."""

    subscription_id: str
    customer_id: str | None
    user_id: str | None
    status: str
    price_id: str | None
    amount: int
    currency: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None


@dataclass(frozen=True)
class SubscriptionCreated:
    event_id: str
    event_type: str
    subscription: SubscriptionSnapshot
    # Kept only for the idempotency ledger's diagnostic column.
    audit_payload: dict[str, Any]


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    invoice_id: str | None
    subscription_id: str | None


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: str | None
    subscription_id: str | None


@dataclass(frozen=True)
class UnsupportedEvent:
    event_id: str
    event_type: str


ClassifiedEvent = Union[
    CheckoutCompleted,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    UnsupportedEvent,
]


def _ref_id(value: Any) -> str | None:
    """Return the id of a Stripe reference, expanded or not."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period_bound(subscription: dict[str, Any], key: str) -> datetime | None:
    # Newer API versions moved period bounds onto subscription items.
    value = subscription.get(key)
    if value is None:
        value = _first_item(subscription).get(key)
    return from_unix(value)


def _subscription_snapshot(obj: dict[str, Any]) -> SubscriptionSnapshot:
    subscription_id = obj.get("id")
    if not subscription_id:
        raise MalformedEventError("subscription event without subscription id")

    price = _first_item(obj).get("price") or {}
    metadata = obj.get("metadata") or {}

    return SubscriptionSnapshot(
        subscription_id=subscription_id,
        customer_id=_ref_id(obj.get("customer")),
        user_id=metadata.get("user_id") or None,
        status=obj.get("status") or "incomplete",
        price_id=price.get("id"),
        amount=price.get("unit_amount") or 0,
        currency=price.get("currency"),
        current_period_start=_period_bound(obj, "current_period_start"),
        current_period_end=_period_bound(obj, "current_period_end"),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        canceled_at=from_unix(obj.get("canceled_at")),
    )


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_id = _ref_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _ref_id(details.get("subscription"))


def _checkout_completed(event: StripeWebhookEvent) -> CheckoutCompleted:
    session = event.data_object
    session_id = session.get("id")
    if not session_id:
        raise MalformedEventError("checkout event without session id")

    metadata = session.get("metadata") or {}
    purpose = (
        PURPOSE_ORGANIZER_VERIFICATION
        if metadata.get("type") == PURPOSE_ORGANIZER_VERIFICATION
        else PURPOSE_STORE_PURCHASE
    )

    return CheckoutCompleted(
        event_id=event.event_id,
        session_id=session_id,
        purpose=purpose,
        order_id=metadata.get("order_id") or None,
        application_id=metadata.get("application_id") or None,
        payment_intent_id=_ref_id(session.get("payment_intent")),
    )


def classify(event: StripeWebhookEvent) -> ClassifiedEvent:
    """Map an authenticated event onto its typed variant.

    Raises:
        MalformedEventError: If a supported kind lacks the object id it
            needs. Missing business metadata (order_id, user_id, ...) is left
            to the handler, which knows whether it is required.
    """
    event_type = event.event_type
    obj = event.data_object

    if event_type == CHECKOUT_COMPLETED:
        return _checkout_completed(event)
    if event_type == SUBSCRIPTION_CREATED:
        return SubscriptionCreated(
            event_id=event.event_id,
            event_type=event_type,
            subscription=_subscription_snapshot(obj),
            audit_payload=obj,
        )
    if event_type == SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(
            event_id=event.event_id, subscription=_subscription_snapshot(obj)
        )
    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(
            event_id=event.event_id, subscription=_subscription_snapshot(obj)
        )
    if event_type == INVOICE_PAID:
        return InvoicePaid(
            event_id=event.event_id,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
        )
    if event_type == INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailed(
            event_id=event.event_id,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
        )
    return UnsupportedEvent(event_id=event.event_id, event_type=event_type)
