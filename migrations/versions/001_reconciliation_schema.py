"""Reconciliation schema: orders, fulfillment, profiles, subscriptions, ledger.

Only the columns the Stripe reconciliation path reads or writes. The wider
product owns memorials, products and auth users; their ids are plain UUID
columns here, without foreign keys.

Duplicate guards live in this schema:
- memorial_store_items UNIQUE(order_item_id)
- stripe_subscriptions UNIQUE(stripe_subscription_id)
- stripe_events UNIQUE(stripe_event_id)

Revision ID: 001_reconciliation_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_reconciliation_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("""
        CREATE TABLE profiles (
            id                            UUID PRIMARY KEY,
            email                         TEXT,
            display_name                  TEXT,
            subscription_tier             TEXT NOT NULL DEFAULT 'free'
                                          CHECK (subscription_tier IN ('free', 'premium')),
            subscription_status           TEXT,
            stripe_subscription_id        TEXT,
            subscription_started_at       TIMESTAMPTZ,
            subscription_ends_at          TIMESTAMPTZ,
            subscription_cancelled_at     TIMESTAMPTZ,
            auto_renew                    BOOLEAN NOT NULL DEFAULT false,
            background_check_status       TEXT NOT NULL DEFAULT 'not_started',
            background_check_approved_at  TIMESTAMPTZ,
            background_check_expires_at   TIMESTAMPTZ,
            background_check_notes        TEXT,
            created_at                    TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at                    TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE store_orders (
            id                          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id                     UUID,
            total_amount_cents          INT NOT NULL DEFAULT 0,
            currency                    TEXT NOT NULL DEFAULT 'usd',
            stripe_checkout_session_id  TEXT,
            stripe_payment_intent_id    TEXT,
            payment_status              TEXT NOT NULL DEFAULT 'pending'
                                        CHECK (payment_status IN ('pending', 'paid', 'failed', 'refunded')),
            fulfillment_status          TEXT NOT NULL DEFAULT 'pending'
                                        CHECK (fulfillment_status IN ('pending', 'fulfilled', 'failed')),
            customer_email              TEXT,
            customer_name               TEXT,
            paid_at                     TIMESTAMPTZ,
            fulfilled_at                TIMESTAMPTZ,
            created_at                  TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at                  TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT fulfilled_requires_paid
                CHECK (fulfillment_status <> 'fulfilled' OR payment_status = 'paid')
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE store_order_items (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id            UUID NOT NULL REFERENCES store_orders(id),
            product_id          UUID NOT NULL,
            memorial_id         UUID NOT NULL,
            price_cents         INT NOT NULL DEFAULT 0,
            dedication_message  TEXT,
            product_snapshot    JSONB NOT NULL,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    conn.exec_driver_sql("""
        CREATE INDEX idx_store_order_items_order ON store_order_items(order_id)
    """)
    conn.exec_driver_sql("""
        CREATE TABLE memorial_store_items (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            memorial_id         UUID NOT NULL,
            order_item_id       UUID NOT NULL REFERENCES store_order_items(id),
            product_id          UUID NOT NULL,
            purchased_by        UUID NOT NULL,
            purchaser_name      TEXT NOT NULL,
            dedication_message  TEXT,
            product_name        TEXT,
            product_type        TEXT,
            preview_image_url   TEXT,
            digital_asset_path  TEXT,
            is_visible          BOOLEAN NOT NULL DEFAULT true,
            display_order       INT NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_memorial_store_items_order_item UNIQUE (order_item_id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE stripe_subscriptions (
            id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id                 UUID NOT NULL,
            stripe_customer_id      TEXT,
            stripe_subscription_id  TEXT NOT NULL,
            stripe_price_id         TEXT,
            status                  TEXT NOT NULL,
            current_period_start    TIMESTAMPTZ,
            current_period_end      TIMESTAMPTZ,
            cancel_at_period_end    BOOLEAN NOT NULL DEFAULT false,
            cancelled_at            TIMESTAMPTZ,
            amount                  INT NOT NULL DEFAULT 0,
            currency                TEXT,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_stripe_subscriptions_subscription UNIQUE (stripe_subscription_id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE stripe_events (
            id               BIGSERIAL PRIMARY KEY,
            stripe_event_id  TEXT NOT NULL,
            event_type       TEXT NOT NULL,
            event_data       JSONB,
            processed        BOOLEAN NOT NULL DEFAULT false,
            processed_at     TIMESTAMPTZ,
            attempts         INT NOT NULL DEFAULT 0,
            error_message    TEXT,
            created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_stripe_events_event UNIQUE (stripe_event_id)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE organizer_applications (
            id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id                   UUID NOT NULL,
            status                    TEXT NOT NULL DEFAULT 'pending_payment',
            stripe_payment_intent_id  TEXT,
            paid_at                   TIMESTAMPTZ,
            created_at                TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at                TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)


def downgrade() -> None:
    conn = op.get_bind()
    for table in (
        "organizer_applications",
        "stripe_events",
        "stripe_subscriptions",
        "memorial_store_items",
        "store_order_items",
        "store_orders",
        "profiles",
    ):
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
