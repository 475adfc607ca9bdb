"""Stripe subscriptions repository - local mirror of Stripe subscription objects.

Uses raw SQL with psycopg2 (no ORM).

Rows are never deleted: cancellation is a status transition. The mirror is
keyed by UNIQUE(stripe_subscription_id).
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

STATUS_CANCELED = "canceled"


def upsert_subscription(
    cur: PgCursor,
    *,
    user_id: str,
    stripe_subscription_id: str,
    stripe_customer_id: str | None,
    stripe_price_id: str | None,
    status: str,
    current_period_start: datetime | None,
    current_period_end: datetime | None,
    cancel_at_period_end: bool,
    amount: int,
    currency: str | None,
) -> tuple[str, bool]:
    """Create the subscription mirror, or overwrite it with the same snapshot.

    A retried created-event (after a failure that released the ledger claim)
    lands here again; the upsert keeps it at a single row.

    Returns:
        Tuple of (subscription_row_id, created).
    """
    cur.execute(
        """
        INSERT INTO stripe_subscriptions (
            user_id, stripe_subscription_id, stripe_customer_id,
            stripe_price_id, status, current_period_start,
            current_period_end, cancel_at_period_end, amount, currency
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (stripe_subscription_id) DO UPDATE
        SET stripe_customer_id = EXCLUDED.stripe_customer_id,
            stripe_price_id = EXCLUDED.stripe_price_id,
            status = EXCLUDED.status,
            current_period_start = EXCLUDED.current_period_start,
            current_period_end = EXCLUDED.current_period_end,
            cancel_at_period_end = EXCLUDED.cancel_at_period_end,
            amount = EXCLUDED.amount,
            currency = EXCLUDED.currency,
            updated_at = now()
        RETURNING id, (xmax = 0) AS inserted
        """,
        (
            user_id,
            stripe_subscription_id,
            stripe_customer_id,
            stripe_price_id,
            status,
            current_period_start,
            current_period_end,
            cancel_at_period_end,
            amount,
            currency,
        ),
    )
    row = cur.fetchone()
    return (str(row[0]), bool(row[1]))


def get_subscription(
    cur: PgCursor,
    *,
    stripe_subscription_id: str,
) -> dict[str, Any] | None:
    """Get the mirror row for a Stripe subscription id.

    Returns:
        Dict with id, user_id, status; or None if not mirrored yet.
    """
    cur.execute(
        """
        SELECT id, user_id, status
        FROM stripe_subscriptions
        WHERE stripe_subscription_id = %s
        """,
        (stripe_subscription_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {"id": str(row[0]), "user_id": str(row[1]), "status": row[2]}


def update_subscription(
    cur: PgCursor,
    *,
    stripe_subscription_id: str,
    status: str,
    current_period_start: datetime | None,
    current_period_end: datetime | None,
    cancel_at_period_end: bool,
    cancelled_at: datetime | None,
) -> bool:
    """Overwrite the mutable fields of a mirrored subscription.

    A canceled row is terminal: an update emitted before the deletion but
    delivered after it changes nothing, and a known cancellation time is
    never cleared.

    Returns:
        True if the row was updated, False if missing or already canceled.
    """
    cur.execute(
        """
        UPDATE stripe_subscriptions
        SET status = %s,
            current_period_start = %s,
            current_period_end = %s,
            cancel_at_period_end = %s,
            cancelled_at = COALESCE(%s, cancelled_at),
            updated_at = now()
        WHERE stripe_subscription_id = %s AND status <> %s
        """,
        (
            status,
            current_period_start,
            current_period_end,
            cancel_at_period_end,
            cancelled_at,
            stripe_subscription_id,
            STATUS_CANCELED,
        ),
    )
    return cur.rowcount > 0


def mark_subscription_canceled(
    cur: PgCursor,
    *,
    stripe_subscription_id: str,
    cancelled_at: datetime,
) -> None:
    """Move a mirrored subscription to status='canceled'.

    The first recorded cancellation time wins on replay.
    """
    cur.execute(
        """
        UPDATE stripe_subscriptions
        SET status = %s,
            cancelled_at = COALESCE(cancelled_at, %s),
            updated_at = now()
        WHERE stripe_subscription_id = %s
        """,
        (STATUS_CANCELED, cancelled_at, stripe_subscription_id),
    )
