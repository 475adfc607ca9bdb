"""Organizer applications repository - paid meetup-organizer verification.

Uses raw SQL with psycopg2 (no ORM).
"""

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PAYMENT_COMPLETE = "payment_complete"


def mark_application_paid(
    cur: PgCursor,
    *,
    application_id: str,
    payment_intent_id: str | None,
    paid_at: datetime,
) -> bool:
    """Record the verification payment on an organizer application.

    Final-state write keyed by application id. Only pending_payment moves to
    payment_complete, so a late redelivery never pulls an application that
    is already under review back to payment_complete. paid_at keeps the
    first value.

    Returns:
        True if the application exists.
    """
    cur.execute(
        """
        UPDATE organizer_applications
        SET status = CASE WHEN status = %s THEN %s ELSE status END,
            stripe_payment_intent_id = COALESCE(%s, stripe_payment_intent_id),
            paid_at = COALESCE(paid_at, %s),
            updated_at = now()
        WHERE id = %s
        """,
        (
            STATUS_PENDING_PAYMENT,
            STATUS_PAYMENT_COMPLETE,
            payment_intent_id,
            paid_at,
            application_id,
        ),
    )
    return cur.rowcount > 0
