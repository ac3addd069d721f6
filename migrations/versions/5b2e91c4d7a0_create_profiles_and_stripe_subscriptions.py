"""Create profiles and stripe_subscriptions tables.

On Supabase the ``profiles`` table usually already exists (created by the
auth signup trigger); it is only created here when missing.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5b2e91c4d7a0"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    if not inspector.has_table("profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.UniqueConstraint("email", name="uq_profiles_email"),
        )

    op.create_table(
        "stripe_subscriptions",
        sa.Column(
            "user_id",
            sa.String(length=255),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("subscription_item_id", sa.String(length=255), nullable=True),
        sa.Column("price_id", sa.String(length=255), nullable=True),
        sa.Column("price_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=16), nullable=True),
        sa.Column("interval", sa.String(length=16), nullable=True),
        sa.Column("interval_count", sa.Integer(), nullable=True),
        sa.Column("subscription_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("billing_cycle_anchor", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_stripe_subscriptions_customer_id", "stripe_subscriptions", ["stripe_customer_id"]
    )
    op.create_index(
        "ix_stripe_subscriptions_subscription_id",
        "stripe_subscriptions",
        ["stripe_subscription_id"],
    )
    logger.info("billing.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_stripe_subscriptions_subscription_id", table_name="stripe_subscriptions")
    op.drop_index("ix_stripe_subscriptions_customer_id", table_name="stripe_subscriptions")
    op.drop_table("stripe_subscriptions")
