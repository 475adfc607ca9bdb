"""Fulfillment repository - digital goods granted to memorials.

Uses raw SQL with psycopg2 (no ORM).

memorial_store_items has UNIQUE(order_item_id). That constraint, not a
prior SELECT, is what keeps a purchased item from being granted twice when
Stripe delivers the same checkout event concurrently.
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_memorial_store_item(
    cur: PgCursor,
    *,
    order_item: dict[str, Any],
    purchased_by: str,
    purchaser_name: str,
) -> bool:
    """Grant one order item, idempotently via UNIQUE(order_item_id).

    Uses ON CONFLICT DO NOTHING so a duplicate delivery neither errors nor
    inserts a second row.

    Args:
        cur: Database cursor (within transaction).
        order_item: Line item dict from list_order_items().
        purchased_by: Purchaser user UUID.
        purchaser_name: Attribution text shown on the memorial.

    Returns:
        True if a record was created, False if one already existed.
    """
    snapshot = order_item["product_snapshot"]
    cur.execute(
        """
        INSERT INTO memorial_store_items (
            memorial_id, order_item_id, product_id,
            purchased_by, purchaser_name, dedication_message,
            product_name, product_type, preview_image_url, digital_asset_path
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (order_item_id) DO NOTHING
        RETURNING id
        """,
        (
            order_item["memorial_id"],
            order_item["id"],
            order_item["product_id"],
            purchased_by,
            purchaser_name,
            order_item["dedication_message"],
            snapshot.get("name"),
            snapshot.get("type"),
            snapshot.get("preview_image_url"),
            snapshot.get("digital_asset_path"),
        ),
    )
    return cur.fetchone() is not None

