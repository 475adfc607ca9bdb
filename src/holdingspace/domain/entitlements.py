"""Entitlement read helpers - capability checks over profile state.

Pure reads. The only writer of these columns is the Stripe reconciliation
path (subscription) and background-check review (out of this service).
A status other than "active" is never read as premium.
"""

from dataclasses import dataclass
from datetime import datetime

from holdingspace.infra.db import txn
from holdingspace.infra.repositories.profiles_repository import (
    STATUS_ACTIVE,
    TIER_PREMIUM,
    get_entitlement_profile,
)
from holdingspace.infra.time import utc_now

BACKGROUND_CHECK_APPROVED = "approved"
BACKGROUND_CHECK_NOT_STARTED = "not_started"

_SUBSCRIPTION_STATUS_LABELS = {
    "active": "Active",
    "cancelled": "Cancelled",
    "past_due": "Past Due",
    "incomplete": "Incomplete",
}

_BACKGROUND_CHECK_LABELS = {
    "not_started": "Not Started",
    "pending": "Under Review",
    "approved": "Approved",
    "rejected": "Rejected",
    "expired": "Expired",
}


@dataclass(frozen=True)
class BackgroundCheck:
    status: str
    approved_at: datetime | None
    expires_at: datetime | None
    is_expired: bool
    notes: str | None


def _load_profile(user_id: str) -> dict | None:
    with txn() as cur:
        return get_entitlement_profile(cur, user_id=user_id)


def is_premium_active(user_id: str) -> bool:
    """True only for tier=premium AND subscription_status=active."""
    profile = _load_profile(user_id)
    if profile is None:
        return False
    return (
        profile["subscription_tier"] == TIER_PREMIUM
        and profile["subscription_status"] == STATUS_ACTIVE
    )


def get_background_check(user_id: str, *, now: datetime | None = None) -> BackgroundCheck | None:
    """Background-check state of a user, or None for an unknown user."""
    profile = _load_profile(user_id)
    if profile is None:
        return None

    expires_at = profile["background_check_expires_at"]
    now = now or utc_now()

    return BackgroundCheck(
        status=profile["background_check_status"] or BACKGROUND_CHECK_NOT_STARTED,
        approved_at=profile["background_check_approved_at"],
        expires_at=expires_at,
        is_expired=expires_at is not None and expires_at < now,
        notes=profile["background_check_notes"],
    )


def is_background_check_approved(user_id: str, *, now: datetime | None = None) -> bool:
    """True if the background check is approved and not expired."""
    check = get_background_check(user_id, now=now)
    if check is None:
        return False
    return check.status == BACKGROUND_CHECK_APPROVED and not check.is_expired


def can_host_gatherings(user_id: str, *, now: datetime | None = None) -> bool:
    """Hosting requires an active premium subscription and a valid check."""
    if not is_premium_active(user_id):
        return False
    return is_background_check_approved(user_id, now=now)


def format_subscription_status(status: str | None) -> str:
    if not status:
        return "Unknown"
    return _SUBSCRIPTION_STATUS_LABELS.get(status, status)


def format_background_check_status(status: str | None) -> str:
    if not status:
        return "Not Started"
    return _BACKGROUND_CHECK_LABELS.get(status, status)
