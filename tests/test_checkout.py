"""Tests for checkout.session.completed handling (in-memory store)."""

import pytest

from holdingspace.domain.checkout import handle_checkout_completed
from holdingspace.domain.errors import MalformedEventError, OrderingGapError
from holdingspace.domain.events import classify
from holdingspace.domain.outcome import Outcome
from tests.helpers import checkout_session, make_event


def _classified(metadata: dict, payment_intent: str | None = "pi_org_1"):
    return classify(
        make_event(
            "checkout.session.completed",
            checkout_session(metadata=metadata, payment_intent=payment_intent),
        )
    )


class TestOrganizerVerification:
    def test_pending_application_marked_paid(self, store):
        store.applications["app-1"] = {"id": "app-1", "status": "pending_payment"}

        outcome = handle_checkout_completed(
            _classified({"type": "organizer_verification", "application_id": "app-1"})
        )

        assert outcome == Outcome.PROCESSED
        application = store.applications["app-1"]
        assert application["status"] == "payment_complete"
        assert application["stripe_payment_intent_id"] == "pi_org_1"
        assert application["paid_at"] is not None
        assert store.orders == {}

    def test_reviewed_application_status_untouched(self, store):
        store.applications["app-1"] = {"id": "app-1", "status": "approved"}

        handle_checkout_completed(
            _classified({"type": "organizer_verification", "application_id": "app-1"})
        )

        assert store.applications["app-1"]["status"] == "approved"

    def test_missing_application_id_is_malformed(self, store):
        with pytest.raises(MalformedEventError):
            handle_checkout_completed(_classified({"type": "organizer_verification"}))

    def test_unknown_application_is_ordering_gap(self, store):
        with pytest.raises(OrderingGapError):
            handle_checkout_completed(
                _classified({"type": "organizer_verification", "application_id": "app-404"})
            )


class TestStorePurchase:
    def test_missing_order_id_is_malformed(self, store):
        with pytest.raises(MalformedEventError):
            handle_checkout_completed(_classified({}))
        assert store.writes == 0

    def test_store_purchase_fulfilled(self, store):
        store.add_order("order-1", "u1", item_count=1)

        outcome = handle_checkout_completed(
            _classified({"type": "store_purchase", "order_id": "order-1"})
        )

        assert outcome == Outcome.PROCESSED
        assert store.orders["order-1"]["fulfillment_status"] == "fulfilled"
        assert len(store.fulfillment_for_order("order-1")) == 1
