"""Profiles repository - entitlement columns of the user profile.

Uses raw SQL with psycopg2 (no ORM).

Every write here is a final-state write derived from the Stripe payload
(never an increment or toggle), so duplicate or reordered application of
the same event converges to the same row.
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

TIER_FREE = "free"
TIER_PREMIUM = "premium"

STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELLED = "cancelled"


def get_purchaser_name(cur: PgCursor, *, user_id: str) -> str:
    """Resolve attribution text for a purchase: display name, email, or Anonymous."""
    cur.execute(
        "SELECT display_name, email FROM profiles WHERE id = %s",
        (user_id,),
    )
    row = cur.fetchone()
    if row is None:
        return "Anonymous"
    display_name, email = row
    return display_name or email or "Anonymous"


def activate_subscription(
    cur: PgCursor,
    *,
    user_id: str,
    status: str,
    stripe_subscription_id: str,
    started_at: datetime | None,
    ends_at: datetime | None,
    auto_renew: bool,
) -> bool:
    """Flip a profile to premium for a newly created subscription.

    Returns:
        True if the profile exists and was updated.
    """
    cur.execute(
        """
        UPDATE profiles
        SET subscription_tier = %s,
            subscription_status = %s,
            stripe_subscription_id = %s,
            subscription_started_at = %s,
            subscription_ends_at = %s,
            auto_renew = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (
            TIER_PREMIUM,
            status,
            stripe_subscription_id,
            started_at,
            ends_at,
            auto_renew,
            user_id,
        ),
    )
    return cur.rowcount > 0


def mirror_subscription(
    cur: PgCursor,
    *,
    user_id: str,
    stripe_subscription_id: str,
    status: str,
    ends_at: datetime | None,
    auto_renew: bool,
    cancelled_at: datetime | None,
) -> bool:
    """Mirror an updated subscription onto the profile it is linked to.

    subscription_cancelled_at is only ever set, never cleared, matching the
    way Stripe keeps canceled_at once a cancellation was requested.
    """
    cur.execute(
        """
        UPDATE profiles
        SET subscription_status = %s,
            subscription_ends_at = %s,
            auto_renew = %s,
            subscription_cancelled_at = COALESCE(%s, subscription_cancelled_at),
            updated_at = now()
        WHERE id = %s AND stripe_subscription_id = %s
        """,
        (status, ends_at, auto_renew, cancelled_at, user_id, stripe_subscription_id),
    )
    return cur.rowcount > 0


def downgrade_to_free(
    cur: PgCursor,
    *,
    user_id: str,
    stripe_subscription_id: str,
) -> bool:
    """Drop a profile to the free tier after its subscription ended.

    Skips profiles already linked to a different (newer) subscription, so a
    replayed deletion of an old subscription cannot downgrade a new one.
    """
    cur.execute(
        """
        UPDATE profiles
        SET subscription_tier = %s,
            subscription_status = %s,
            stripe_subscription_id = NULL,
            updated_at = now()
        WHERE id = %s
          AND (stripe_subscription_id IS NULL OR stripe_subscription_id = %s)
        """,
        (TIER_FREE, STATUS_CANCELLED, user_id, stripe_subscription_id),
    )
    return cur.rowcount > 0


def reassert_premium(
    cur: PgCursor,
    *,
    user_id: str,
    stripe_subscription_id: str,
) -> bool:
    """Re-assert premium/active after a paid renewal invoice.

    Only applies while the profile is still linked to the invoiced
    subscription; after a deletion the link is NULL and nothing changes.
    """
    cur.execute(
        """
        UPDATE profiles
        SET subscription_tier = %s,
            subscription_status = %s,
            updated_at = now()
        WHERE id = %s AND stripe_subscription_id = %s
        """,
        (TIER_PREMIUM, STATUS_ACTIVE, user_id, stripe_subscription_id),
    )
    return cur.rowcount > 0


def mark_past_due(
    cur: PgCursor,
    *,
    user_id: str,
    stripe_subscription_id: str,
) -> bool:
    """Set subscription_status='past_due' without touching the tier."""
    cur.execute(
        """
        UPDATE profiles
        SET subscription_status = %s, updated_at = now()
        WHERE id = %s AND stripe_subscription_id = %s
        """,
        (STATUS_PAST_DUE, user_id, stripe_subscription_id),
    )
    return cur.rowcount > 0


def get_entitlement_profile(cur: PgCursor, *, user_id: str) -> dict[str, Any] | None:
    """Read the entitlement columns of a profile.

    Returns:
        Dict with subscription_tier, subscription_status,
        background_check_status, background_check_approved_at,
        background_check_expires_at, background_check_notes; or None.
    """
    cur.execute(
        """
        SELECT subscription_tier, subscription_status,
               background_check_status, background_check_approved_at,
               background_check_expires_at, background_check_notes
        FROM profiles
        WHERE id = %s
        """,
        (user_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "subscription_tier": row[0],
        "subscription_status": row[1],
        "background_check_status": row[2],
        "background_check_approved_at": row[3],
        "background_check_expires_at": row[4],
        "background_check_notes": row[5],
    }
