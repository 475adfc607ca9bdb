"""Stripe webhook signature validation and payload parsing.

Purpose:
- Validate webhook signature using Stripe-Signature header.
- Reject stale timestamps (replay window).
- Extract the event envelope as plain dicts for the classifier.
- Never log payload or signature.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import stripe

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass
class StripeWebhookEvent:
    """Verified Stripe event envelope."""

    event_id: str
    event_type: str
    created: int | None
    data_object: dict[str, Any] = field(default_factory=dict)


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str | None,
    webhook_secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> StripeWebhookEvent:
    """Validate Stripe webhook signature and extract the event envelope.

    The signature is checked before the body is parsed, so nothing in an
    unauthenticated payload ever reaches business logic.

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: Value of Stripe-Signature header.
        webhook_secret: Webhook endpoint secret from Stripe.
        tolerance: Maximum age of the signed timestamp, in seconds.

    Returns:
        StripeWebhookEvent with event_id, event_type, created, data_object.

    Raises:
        InvalidSignatureError: If the header is missing, the signature does
            not match, or the timestamp is outside the tolerance window.
        InvalidPayloadError: If the body is not a JSON event envelope.
    """
    if not signature_header:
        raise InvalidSignatureError("Missing signature header")

    try:
        payload = payload_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning("stripe webhook payload is not utf-8")
        raise InvalidPayloadError("Invalid payload encoding") from e

    try:
        stripe.WebhookSignature.verify_header(
            payload, signature_header, webhook_secret, tolerance
        )
    except stripe.SignatureVerificationError as e:
        # Do NOT log signature or payload
        logger.warning("stripe webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature") from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        logger.warning("stripe webhook payload parsing failed")
        raise InvalidPayloadError("Invalid payload") from e

    if not isinstance(event, dict):
        raise InvalidPayloadError("Event is not an object")

    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise InvalidPayloadError("Missing event id or type")

    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        raise InvalidPayloadError("Missing data.object")

    return StripeWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        created=event.get("created"),
        data_object=data_object,
    )
