"""Shared test helpers for reconciliation tests.

This module contains plain helpers (NOT fixtures):
- FakeStore: in-memory stand-in for the repository functions, with
  transactional rollback and a single store-wide lock per transaction.
- Builders for Stripe event payloads and real Stripe signatures.
"""

from __future__ import annotations

import copy
import json
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any

import stripe

from holdingspace.infra.repositories.stripe_events_repository import LedgerClaim
from holdingspace.stripe.webhook import StripeWebhookEvent

WEBHOOK_SECRET = "whsec_test_reconciliation_secret_123"

# 2026-01-01T00:00:00Z / 2026-02-01T00:00:00Z
PERIOD_START = 1767225600
PERIOD_END = 1769904000

# Modules whose repository imports and txn() are replaced by FakeStore
PATCHED_MODULES = (
    "holdingspace.domain.fulfillment",
    "holdingspace.domain.checkout",
    "holdingspace.domain.subscriptions",
    "holdingspace.domain.entitlements",
)

_TABLES = (
    "orders",
    "order_items",
    "profiles",
    "fulfillment",
    "subscriptions",
    "ledger",
    "applications",
)


class FakeStore:
    """In-memory store mirroring the repository function signatures.

    Each txn() holds a store-wide lock and snapshots every table; an
    exception inside the block restores the snapshot, like a rollback.
    The uniqueness rules of the real schema are reproduced:
    fulfillment keyed by order_item_id, subscriptions by Stripe id,
    ledger by event id.
    """

    def __init__(self) -> None:
        self.orders: dict[str, dict] = {}
        self.order_items: dict[str, dict] = {}
        self.profiles: dict[str, dict] = {}
        self.fulfillment: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.ledger: dict[str, dict] = {}
        self.applications: dict[str, dict] = {}
        self.writes = 0
        self.transactions = 0
        # name -> [exception, calls_to_skip]
        self.failures: dict[str, list] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Test plumbing
    # ------------------------------------------------------------------

    def install(self, monkeypatch) -> None:
        import importlib

        for module_name in PATCHED_MODULES:
            module = importlib.import_module(module_name)
            monkeypatch.setattr(module, "txn", self.txn)
            for name in dir(self):
                if name.startswith("_") or name in ("install", "txn", "fail"):
                    continue
                if hasattr(module, name) and callable(getattr(self, name)):
                    monkeypatch.setattr(module, name, getattr(self, name))

    def fail(self, name: str, exc: Exception, *, after: int = 0) -> None:
        """Make repository function `name` raise `exc` after `after` calls."""
        self.failures[name] = [exc, after]

    def _maybe_fail(self, name: str) -> None:
        failure = self.failures.get(name)
        if failure is None:
            return
        if failure[1] > 0:
            failure[1] -= 1
            return
        raise failure[0]

    def _write(self, name: str) -> None:
        self._maybe_fail(name)
        self.writes += 1

    @contextmanager
    def txn(self, conn=None):
        with self._lock:
            self.transactions += 1
            snapshot = {t: copy.deepcopy(getattr(self, t)) for t in _TABLES}
            try:
                yield object()
            except BaseException:
                for table, rows in snapshot.items():
                    setattr(self, table, rows)
                raise

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_profile(self, user_id: str, **fields: Any) -> dict:
        profile = {
            "id": user_id,
            "email": f"{user_id}@example.com",
            "display_name": None,
            "subscription_tier": "free",
            "subscription_status": None,
            "stripe_subscription_id": None,
            "subscription_started_at": None,
            "subscription_ends_at": None,
            "subscription_cancelled_at": None,
            "auto_renew": False,
            "background_check_status": "not_started",
            "background_check_approved_at": None,
            "background_check_expires_at": None,
            "background_check_notes": None,
        }
        profile.update(fields)
        self.profiles[user_id] = profile
        return profile

    def add_order(self, order_id: str, user_id: str | None, item_count: int = 2) -> list[str]:
        self.orders[order_id] = {
            "id": order_id,
            "user_id": user_id,
            "payment_status": "pending",
            "fulfillment_status": "pending",
            "stripe_payment_intent_id": None,
            "paid_at": None,
            "fulfilled_at": None,
        }
        item_ids = []
        for n in range(item_count):
            item_id = f"{order_id}-item-{n}"
            self.order_items[item_id] = {
                "id": item_id,
                "order_id": order_id,
                "product_id": f"product-{n}",
                "memorial_id": "memorial-1",
                "dedication_message": f"In loving memory #{n}",
                "product_snapshot": {
                    "name": f"Candle {n}",
                    "type": "icon",
                    "description": "A lit candle",
                    "preview_image_url": f"https://cdn.example.com/candle-{n}.png",
                    "digital_asset_path": f"assets/candle-{n}.svg",
                },
            }
            item_ids.append(item_id)
        return item_ids

    def fulfillment_for_order(self, order_id: str) -> list[dict]:
        return [
            record
            for record in self.fulfillment.values()
            if self.order_items[record["order_item_id"]]["order_id"] == order_id
        ]

    # ------------------------------------------------------------------
    # orders_repository
    # ------------------------------------------------------------------

    def mark_order_paid(self, cur, *, order_id, payment_intent_id, paid_at):
        self._write("mark_order_paid")
        order = self.orders.get(order_id)
        if order is None:
            return None
        order["payment_status"] = "paid"
        order["stripe_payment_intent_id"] = payment_intent_id or order["stripe_payment_intent_id"]
        order["paid_at"] = order["paid_at"] or paid_at
        return {"id": order_id, "user_id": order["user_id"]}

    def list_order_items(self, cur, *, order_id):
        self._maybe_fail("list_order_items")
        return [
            copy.deepcopy(item)
            for item in self.order_items.values()
            if item["order_id"] == order_id
        ]

    def mark_order_fulfilled(self, cur, *, order_id, fulfilled_at):
        self._write("mark_order_fulfilled")
        order = self.orders.get(order_id)
        if order is None or order["payment_status"] != "paid":
            return False
        order["fulfillment_status"] = "fulfilled"
        order["fulfilled_at"] = order["fulfilled_at"] or fulfilled_at
        return True

    # ------------------------------------------------------------------
    # fulfillment_repository
    # ------------------------------------------------------------------

    def insert_memorial_store_item(self, cur, *, order_item, purchased_by, purchaser_name):
        self._write("insert_memorial_store_item")
        if order_item["id"] in self.fulfillment:
            return False
        snapshot = order_item["product_snapshot"]
        self.fulfillment[order_item["id"]] = {
            "id": str(uuid.uuid4()),
            "order_item_id": order_item["id"],
            "memorial_id": order_item["memorial_id"],
            "product_id": order_item["product_id"],
            "purchased_by": purchased_by,
            "purchaser_name": purchaser_name,
            "dedication_message": order_item["dedication_message"],
            "product_name": snapshot.get("name"),
            "product_type": snapshot.get("type"),
            "preview_image_url": snapshot.get("preview_image_url"),
            "digital_asset_path": snapshot.get("digital_asset_path"),
            "is_visible": True,
        }
        return True

    # ------------------------------------------------------------------
    # profiles_repository
    # ------------------------------------------------------------------

    def get_purchaser_name(self, cur, *, user_id):
        profile = self.profiles.get(user_id)
        if profile is None:
            return "Anonymous"
        return profile["display_name"] or profile["email"] or "Anonymous"

    def activate_subscription(
        self, cur, *, user_id, status, stripe_subscription_id, started_at, ends_at, auto_renew
    ):
        self._write("activate_subscription")
        profile = self.profiles.get(user_id)
        if profile is None:
            return False
        profile.update(
            subscription_tier="premium",
            subscription_status=status,
            stripe_subscription_id=stripe_subscription_id,
            subscription_started_at=started_at,
            subscription_ends_at=ends_at,
            auto_renew=auto_renew,
        )
        return True

    def mirror_subscription(
        self, cur, *, user_id, stripe_subscription_id, status, ends_at, auto_renew, cancelled_at
    ):
        self._write("mirror_subscription")
        profile = self.profiles.get(user_id)
        if profile is None or profile["stripe_subscription_id"] != stripe_subscription_id:
            return False
        profile.update(
            subscription_status=status,
            subscription_ends_at=ends_at,
            auto_renew=auto_renew,
        )
        if cancelled_at is not None:
            profile["subscription_cancelled_at"] = cancelled_at
        return True

    def downgrade_to_free(self, cur, *, user_id, stripe_subscription_id):
        self._write("downgrade_to_free")
        profile = self.profiles.get(user_id)
        if profile is None or profile["stripe_subscription_id"] not in (None, stripe_subscription_id):
            return False
        profile.update(
            subscription_tier="free",
            subscription_status="cancelled",
            stripe_subscription_id=None,
        )
        return True

    def reassert_premium(self, cur, *, user_id, stripe_subscription_id):
        self._write("reassert_premium")
        profile = self.profiles.get(user_id)
        if profile is None or profile["stripe_subscription_id"] != stripe_subscription_id:
            return False
        profile.update(subscription_tier="premium", subscription_status="active")
        return True

    def mark_past_due(self, cur, *, user_id, stripe_subscription_id):
        self._write("mark_past_due")
        profile = self.profiles.get(user_id)
        if profile is None or profile["stripe_subscription_id"] != stripe_subscription_id:
            return False
        profile["subscription_status"] = "past_due"
        return True

    def get_entitlement_profile(self, cur, *, user_id):
        profile = self.profiles.get(user_id)
        if profile is None:
            return None
        return {
            key: profile[key]
            for key in (
                "subscription_tier",
                "subscription_status",
                "background_check_status",
                "background_check_approved_at",
                "background_check_expires_at",
                "background_check_notes",
            )
        }

    # ------------------------------------------------------------------
    # subscriptions_repository
    # ------------------------------------------------------------------

    def upsert_subscription(self, cur, *, user_id, stripe_subscription_id, **fields):
        self._write("upsert_subscription")
        existing = self.subscriptions.get(stripe_subscription_id)
        if existing is not None:
            existing.update(fields)
            return (existing["id"], False)
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "stripe_subscription_id": stripe_subscription_id,
            "cancelled_at": None,
            **fields,
        }
        self.subscriptions[stripe_subscription_id] = row
        return (row["id"], True)

    def get_subscription(self, cur, *, stripe_subscription_id):
        self._maybe_fail("get_subscription")
        row = self.subscriptions.get(stripe_subscription_id)
        if row is None:
            return None
        return {"id": row["id"], "user_id": row["user_id"], "status": row["status"]}

    def update_subscription(self, cur, *, stripe_subscription_id, cancelled_at, **fields):
        self._write("update_subscription")
        row = self.subscriptions.get(stripe_subscription_id)
        if row is None or row["status"] == "canceled":
            return False
        row.update(fields, cancelled_at=cancelled_at or row["cancelled_at"])
        return True

    def mark_subscription_canceled(self, cur, *, stripe_subscription_id, cancelled_at):
        self._write("mark_subscription_canceled")
        row = self.subscriptions.get(stripe_subscription_id)
        if row is not None:
            row["status"] = "canceled"
            row["cancelled_at"] = row["cancelled_at"] or cancelled_at

    # ------------------------------------------------------------------
    # stripe_events_repository
    # ------------------------------------------------------------------

    def record_if_new(self, cur, *, event_id, event_type, payload=None):
        self._write("record_if_new")
        entry = self.ledger.get(event_id)
        if entry is None:
            self.ledger[event_id] = {
                "stripe_event_id": event_id,
                "event_type": event_type,
                "event_data": payload,
                "processed": False,
                "processed_at": None,
                "attempts": 1,
                "error_message": None,
            }
            return LedgerClaim(is_new=True, attempt=1)
        if entry["processed"]:
            return LedgerClaim(is_new=False)
        entry["attempts"] += 1
        return LedgerClaim(is_new=True, attempt=entry["attempts"])

    def mark_processed(self, cur, *, event_id):
        self._write("mark_processed")
        entry = self.ledger[event_id]
        entry.update(processed=True, processed_at=time.time(), error_message=None)

    def mark_failed(self, cur, *, event_id, event_type, reason):
        self._write("mark_failed")
        entry = self.ledger.get(event_id)
        if entry is None:
            self.ledger[event_id] = {
                "stripe_event_id": event_id,
                "event_type": event_type,
                "event_data": None,
                "processed": False,
                "processed_at": None,
                "attempts": 1,
                "error_message": reason,
            }
        elif not entry["processed"]:
            entry["attempts"] += 1
            entry["error_message"] = reason

    # ------------------------------------------------------------------
    # organizer_applications_repository
    # ------------------------------------------------------------------

    def mark_application_paid(self, cur, *, application_id, payment_intent_id, paid_at):
        self._write("mark_application_paid")
        application = self.applications.get(application_id)
        if application is None:
            return False
        if application["status"] == "pending_payment":
            application["status"] = "payment_complete"
        application["stripe_payment_intent_id"] = (
            payment_intent_id or application.get("stripe_payment_intent_id")
        )
        application["paid_at"] = application.get("paid_at") or paid_at
        return True


# ----------------------------------------------------------------------
# Stripe payload builders
# ----------------------------------------------------------------------


def checkout_session(
    *,
    session_id: str = "cs_test_session_1",
    metadata: dict | None = None,
    payment_intent: str | None = "pi_test_intent_1",
) -> dict:
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "payment_status": "paid",
        "payment_intent": payment_intent,
        "metadata": metadata if metadata is not None else {},
    }


def subscription_object(
    *,
    subscription_id: str = "sub_test_1",
    user_id: str | None = "u1",
    status: str = "active",
    cancel_at_period_end: bool = False,
    canceled_at: int | None = None,
    period_on_items: bool = False,
) -> dict:
    item: dict = {
        "id": "si_test_1",
        "price": {
            "id": "price_premium_monthly",
            "unit_amount": 999,
            "currency": "usd",
        },
    }
    obj: dict = {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_test_1",
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": canceled_at,
        "metadata": {"user_id": user_id} if user_id else {},
        "items": {"object": "list", "data": [item]},
    }
    bounds = {"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}
    if period_on_items:
        item.update(bounds)
    else:
        obj.update(bounds)
    return obj


def invoice_object(*, invoice_id: str = "in_test_1", subscription_id: str | None = "sub_test_1") -> dict:
    return {"id": invoice_id, "object": "invoice", "subscription": subscription_id}


def make_event(event_type: str, obj: dict, *, event_id: str = "evt_test_00000001") -> StripeWebhookEvent:
    return StripeWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        created=int(time.time()),
        data_object=obj,
    )


def signed_request(
    event_type: str,
    obj: dict,
    *,
    event_id: str = "evt_test_00000001",
    secret: str = WEBHOOK_SECRET,
    timestamp: int | None = None,
) -> tuple[bytes, str]:
    """Build a payload + valid Stripe-Signature header with the Stripe SDK.

    Returns:
        (payload_bytes, signature_header)
    """
    payload = json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    })

    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = stripe.WebhookSignature._compute_signature(f"{ts}.{payload}", secret)
    return payload.encode(), f"t={ts},v1={signature}"
