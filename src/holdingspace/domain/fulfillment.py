"""Store fulfillment - grant purchased digital goods after payment.

Runs for checkout.session.completed events of store purchases. Two
transactions, in this order:

1. Mark the order paid (final-state write, committed on its own so a paid
   order is visible even when granting fails and Stripe has to retry).
2. For every line item, insert a memorial_store_items row keyed by
   UNIQUE(order_item_id) with ON CONFLICT DO NOTHING; then mark the order
   fulfilled. Fulfilled is the last write, so a crash anywhere before it
   leaves the order "paid, not fulfilled", never "fulfilled, missing items".

A conflicting insert means a previous delivery of the same event already
granted that item. It is counted as confirmed, not as an error; this does
not depend on the idempotency ledger.
"""

from dataclasses import dataclass

import psycopg2

from holdingspace.domain.errors import (
    FulfillmentError,
    MalformedEventError,
    OrderingGapError,
)
from holdingspace.infra.db import txn
from holdingspace.infra.repositories.fulfillment_repository import (
    insert_memorial_store_item,
)
from holdingspace.infra.repositories.orders_repository import (
    list_order_items,
    mark_order_fulfilled,
    mark_order_paid,
)
from holdingspace.infra.repositories.profiles_repository import get_purchaser_name
from holdingspace.infra.time import utc_now
from holdingspace.observability.logging import get_logger
from holdingspace.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class FulfillmentResult:
    order_id: str
    items_total: int
    items_created: int

    @property
    def items_existing(self) -> int:
        """Items already granted by an earlier delivery."""
        return self.items_total - self.items_created


def fulfill_order(
    *,
    order_id: str,
    payment_intent_id: str | None,
    event_id: str,
) -> FulfillmentResult:
    """Mark an order paid, grant every line item, then mark it fulfilled.

    Safe to call any number of times for the same order, concurrently or not.

    Args:
        order_id: Order UUID from checkout session metadata.
        payment_intent_id: Stripe PaymentIntent reference.
        event_id: Stripe event id (logging only).

    Returns:
        FulfillmentResult with per-item counts.

    Raises:
        OrderingGapError: Order not visible in the store (yet).
        MalformedEventError: Order has no owning user.
        FulfillmentError: A grant failed for a reason other than a duplicate.
    """
    now = utc_now()

    # Step 1: payment status (own transaction)
    with txn() as cur:
        order = mark_order_paid(
            cur,
            order_id=order_id,
            payment_intent_id=payment_intent_id,
            paid_at=now,
        )

    if order is None:
        raise OrderingGapError(f"order {order_id} not found")

    user_id = order["user_id"]
    if not user_id:
        raise MalformedEventError(f"order {order_id} has no owning user")

    # Steps 2-5: grants, then completion marker
    items_created = 0
    with txn() as cur:
        items = list_order_items(cur, order_id=order_id)
        purchaser_name = get_purchaser_name(cur, user_id=user_id)

        for item in items:
            try:
                created = insert_memorial_store_item(
                    cur,
                    order_item=item,
                    purchased_by=user_id,
                    purchaser_name=purchaser_name,
                )
            except psycopg2.Error as e:
                raise FulfillmentError(
                    f"failed to grant order item {item['id']}"
                ) from e

            if created:
                items_created += 1
            else:
                logger.info(
                    "order item already fulfilled",
                    extra={
                        "extra_fields": safe_log_context(
                            order_id=order_id,
                            order_item_id=item["id"],
                            event_id_prefix=id_prefix(event_id),
                        )
                    },
                )

        if not items:
            logger.warning(
                "order has no line items",
                extra={"extra_fields": safe_log_context(order_id=order_id)},
            )

        if not mark_order_fulfilled(cur, order_id=order_id, fulfilled_at=now):
            raise FulfillmentError(f"order {order_id} could not be marked fulfilled")

    result = FulfillmentResult(
        order_id=order_id,
        items_total=len(items),
        items_created=items_created,
    )

    logger.info(
        "order fulfilled",
        extra={
            "extra_fields": safe_log_context(
                order_id=order_id,
                items_total=result.items_total,
                items_created=result.items_created,
                items_existing=result.items_existing,
                event_id_prefix=id_prefix(event_id),
            )
        },
    )

    return result
