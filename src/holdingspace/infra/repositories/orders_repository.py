"""Store orders repository - payment/fulfillment state of one-time purchases.

Uses raw SQL with psycopg2 (no ORM).

Orders are created pending/pending by the checkout flow; only the Stripe
reconciliation path moves them to paid and then fulfilled.
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def mark_order_paid(
    cur: PgCursor,
    *,
    order_id: str,
    payment_intent_id: str | None,
    paid_at: datetime,
) -> dict[str, Any] | None:
    """Set payment_status='paid' (final-state write, safe to repeat).

    paid_at keeps the value from the first delivery so redelivery does not
    move the payment timestamp.

    Args:
        cur: Database cursor (within transaction).
        order_id: Order UUID from checkout session metadata.
        payment_intent_id: Stripe PaymentIntent reference.
        paid_at: Timestamp to record if the order was not paid yet.

    Returns:
        Dict with id and user_id (None if the order has no owner), or None
        if the order does not exist.
    """
    cur.execute(
        """
        UPDATE store_orders
        SET payment_status = 'paid',
            stripe_payment_intent_id = COALESCE(%s, stripe_payment_intent_id),
            paid_at = COALESCE(paid_at, %s),
            updated_at = now()
        WHERE id = %s
        RETURNING user_id
        """,
        (payment_intent_id, paid_at, order_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": order_id, "user_id": str(row[0]) if row[0] else None}


def list_order_items(cur: PgCursor, *, order_id: str) -> list[dict[str, Any]]:
    """Load every line item of an order with its frozen product snapshot.

    The snapshot is the product as it was at checkout; later product edits
    must not leak into fulfillment records.

    Returns:
        List of dicts with id, product_id, memorial_id, dedication_message
        and product_snapshot (dict), ordered by creation.
    """
    cur.execute(
        """
        SELECT id, product_id, memorial_id, dedication_message, product_snapshot
        FROM store_order_items
        WHERE order_id = %s
        ORDER BY created_at, id
        """,
        (order_id,),
    )
    return [
        {
            "id": str(row[0]),
            "product_id": str(row[1]),
            "memorial_id": str(row[2]),
            "dedication_message": row[3],
            "product_snapshot": row[4] or {},
        }
        for row in cur.fetchall()
    ]


def mark_order_fulfilled(
    cur: PgCursor,
    *,
    order_id: str,
    fulfilled_at: datetime,
) -> bool:
    """Set fulfillment_status='fulfilled'. Only valid for paid orders.

    The payment_status guard keeps the fulfilled-implies-paid invariant even
    if a caller runs this out of order.

    Returns:
        True if the order is (now) fulfilled, False if not found or unpaid.
    """
    cur.execute(
        """
        UPDATE store_orders
        SET fulfillment_status = 'fulfilled',
            fulfilled_at = COALESCE(fulfilled_at, %s),
            updated_at = now()
        WHERE id = %s AND payment_status = 'paid'
        """,
        (fulfilled_at, order_id),
    )
    return cur.rowcount > 0
