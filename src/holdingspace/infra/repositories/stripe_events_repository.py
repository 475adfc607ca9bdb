"""Idempotency ledger - durable record of processed Stripe event ids.

Uses raw SQL with psycopg2 (no ORM).

Only transitions that are not safe to replay consult the ledger (today:
customer.subscription.created). Everything else relies on final-state writes
and unique constraints.

Claim protocol
──────────────
record_if_new() runs inside the handler's transaction:

  1. First sighting      → row inserted, claim is new.
  2. Unprocessed row     → a previous attempt failed; attempts++ and the
                           claim is new again (row stays locked until the
                           handler's transaction ends).
  3. Processed row       → duplicate delivery; nothing returned.

A concurrent delivery of the same event blocks on the row lock of case 1/2
and then re-evaluates the WHERE clause against the committed row, so exactly
one of them sees a new claim.
"""

import json
from dataclasses import dataclass
from typing import Any

from psycopg2.extensions import cursor as PgCursor

MAX_ERROR_LENGTH = 500


@dataclass(frozen=True)
class LedgerClaim:
    """Outcome of record_if_new()."""

    is_new: bool
    attempt: int = 0


def record_if_new(
    cur: PgCursor,
    *,
    event_id: str,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> LedgerClaim:
    """Atomically claim an event id for processing.

    Args:
        cur: Database cursor (within the handler's transaction).
        event_id: Stripe event id (evt_...).
        event_type: Stripe event type, stored for diagnostics.
        payload: Event data object, stored for diagnostics only.

    Returns:
        LedgerClaim(is_new=True, attempt=n) if this delivery should process
        the event, LedgerClaim(is_new=False) if it was already processed.
    """
    payload_json = json.dumps(payload) if payload is not None else None

    cur.execute(
        """
        INSERT INTO stripe_events (
            stripe_event_id, event_type, event_data, processed, attempts
        )
        VALUES (%s, %s, %s, false, 1)
        ON CONFLICT (stripe_event_id) DO UPDATE
        SET attempts = stripe_events.attempts + 1
        WHERE stripe_events.processed = false
        RETURNING attempts
        """,
        (event_id, event_type, payload_json),
    )
    row = cur.fetchone()

    if row is None:
        return LedgerClaim(is_new=False)
    return LedgerClaim(is_new=True, attempt=row[0])


def mark_processed(cur: PgCursor, *, event_id: str) -> None:
    """Mark a claimed event as fully handled. Call in the claiming transaction."""
    cur.execute(
        """
        UPDATE stripe_events
        SET processed = true,
            processed_at = now(),
            error_message = NULL
        WHERE stripe_event_id = %s
        """,
        (event_id,),
    )


def mark_failed(
    cur: PgCursor,
    *,
    event_id: str,
    event_type: str,
    reason: str,
) -> None:
    """Record why processing failed, leaving the event re-claimable.

    Runs in its own transaction after the handler's transaction rolled back,
    which also rolled back the claim itself, hence the upsert.
    """
    cur.execute(
        """
        INSERT INTO stripe_events (
            stripe_event_id, event_type, processed, attempts, error_message
        )
        VALUES (%s, %s, false, 1, %s)
        ON CONFLICT (stripe_event_id) DO UPDATE
        SET attempts = stripe_events.attempts + 1,
            error_message = EXCLUDED.error_message
        WHERE stripe_events.processed = false
        """,
        (event_id, event_type, reason[:MAX_ERROR_LENGTH]),
    )


def get_event(cur: PgCursor, *, event_id: str) -> dict[str, Any] | None:
    """Read a ledger entry (diagnostics and tests)."""
    cur.execute(
        """
        SELECT stripe_event_id, event_type, processed, processed_at,
               attempts, error_message
        FROM stripe_events
        WHERE stripe_event_id = %s
        """,
        (event_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "stripe_event_id": row[0],
        "event_type": row[1],
        "processed": row[2],
        "processed_at": row[3],
        "attempts": row[4],
        "error_message": row[5],
    }
