"""Reconciliation outcomes reported back to the webhook route."""

from enum import Enum


class Outcome(str, Enum):
    """Every outcome maps to a 2xx; errors are raised, not returned."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
