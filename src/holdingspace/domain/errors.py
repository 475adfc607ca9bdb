"""Reconciliation error taxonomy.

The webhook route maps `retryable` to the status code Stripe sees:
permanent errors become 4xx (no redelivery), retryable ones 5xx
(redelivery with Stripe's own backoff). Duplicate deliveries are
outcomes, not errors.
"""


class ReconciliationError(Exception):
    """Base class for errors raised while reconciling a Stripe event."""

    retryable = False


class MalformedEventError(ReconciliationError):
    """Event is missing data no redelivery will ever supply (e.g. order_id)."""


class OrderingGapError(ReconciliationError):
    """Referenced order/subscription/application is not visible yet.

    Usually the event that creates it is still in flight; redelivery after it
    lands resolves the gap.
    """

    retryable = True


class FulfillmentError(ReconciliationError):
    """Granting a purchased digital good failed for a non-duplicate reason."""

    retryable = True
