"""Stripe webhook route - public endpoint for Stripe events.

Security rules:
- Validate Stripe-Signature on every request, before any store access.
- Never log payload or signature header.

Status codes are the only retry control Stripe sees:
- 2xx: accepted (processed, duplicate, or unsupported kind). No redelivery.
- 4xx: permanent rejection (bad signature, malformed event). No redelivery.
- 5xx: transient failure (ordering gap, store error). Stripe redelivers.
"""

from __future__ import annotations

import asyncio
import os

from fastapi import APIRouter, Header, Request, Response

from holdingspace.domain.errors import ReconciliationError
from holdingspace.domain.reconcile import reconcile
from holdingspace.observability.correlation import get_correlation_id
from holdingspace.observability.logging import get_logger
from holdingspace.observability.redaction import id_prefix, safe_log_context
from holdingspace.stripe.webhook import (
    DEFAULT_TOLERANCE_SECONDS,
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _get_webhook_secret() -> str:
    """Get Stripe webhook secret from environment."""
    secret = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
    return secret


def _get_tolerance() -> int:
    """Signature timestamp tolerance in seconds (STRIPE_WEBHOOK_TOLERANCE)."""
    raw = os.environ.get("STRIPE_WEBHOOK_TOLERANCE", "")
    try:
        return int(raw) if raw else DEFAULT_TOLERANCE_SECONDS
    except ValueError:
        return DEFAULT_TOLERANCE_SECONDS


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
) -> Response:
    """Receive and reconcile a Stripe webhook event.

    Args:
        request: FastAPI request object.
        stripe_signature: Stripe-Signature header.

    Returns:
        200 with the outcome (processed/duplicate/ignored).
        400 if signature invalid or event permanently malformed.
        500 if reconciliation failed transiently or config is missing.
    """
    correlation_id = get_correlation_id()

    payload_bytes = await request.body()

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        event = verify_and_extract(
            payload_bytes,
            stripe_signature,
            webhook_secret,
            tolerance=_get_tolerance(),
        )
    except InvalidSignatureError:
        logger.warning(
            "stripe signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        logger.warning(
            "stripe payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")

    # Log only safe metadata (no payload, no signature)
    event_context = {
        "correlationId": correlation_id,
        "event_id_prefix": id_prefix(event.event_id),
        "event_type": event.event_type,
    }
    logger.info(
        "stripe webhook received",
        extra={"extra_fields": safe_log_context(**event_context)},
    )

    try:
        # Handlers use blocking psycopg2 calls; keep them off the event loop.
        outcome = await asyncio.to_thread(reconcile, event)
    except ReconciliationError as e:
        # retryable alone picks 5xx (Stripe redelivers) over 4xx.
        logger.warning(
            "stripe event reconciliation deferred"
            if e.retryable
            else "stripe event rejected",
            extra={
                "extra_fields": safe_log_context(
                    **event_context,
                    error_type=type(e).__name__,
                    reason=str(e),
                )
            },
        )
        if e.retryable:
            return Response(status_code=500, content="retry later")
        return Response(status_code=400, content="malformed event")
    except Exception:
        logger.exception(
            "stripe event reconciliation failed",
            extra={"extra_fields": safe_log_context(**event_context)},
        )
        return Response(status_code=500, content="processing failed")

    logger.info(
        "stripe webhook handled",
        extra={"extra_fields": safe_log_context(**event_context, outcome=outcome.value)},
    )
    return Response(status_code=200, content=outcome.value)
