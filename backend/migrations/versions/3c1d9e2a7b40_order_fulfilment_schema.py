"""order fulfilment schema

Revision ID: 3c1d9e2a7b40
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1d9e2a7b40"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    cols = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return cols


def _create_indexes(insp, table_name: str, indexes) -> None:
    existing = {str(idx.get("name") or "") for idx in insp.get_indexes(table_name)}
    for name, columns, unique in indexes:
        if name not in existing:
            op.create_index(name, table_name, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if not insp.has_table("profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("full_name", sa.String(length=160), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone_number", sa.String(length=32), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
            sa.Column("pickup_address_encrypted", sa.Text(), nullable=True),
            sa.Column("shipping_address_encrypted", sa.Text(), nullable=True),
            sa.Column("address_encryption_version", sa.Integer(), nullable=True),
            sa.Column("preferred_delivery_locker_location_id", sa.String(length=64), nullable=True),
            sa.Column("preferred_delivery_locker_provider_slug", sa.String(length=64), nullable=True),
            sa.Column("preferred_delivery_locker_data_json", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "profiles", (("ix_profiles_email", ["email"], True),))

    if not insp.has_table("books"):
        op.create_table(
            "books",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("author", sa.String(length=255), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("condition", sa.String(length=32), nullable=True),
            sa.Column("pickup_address_encrypted", sa.Text(), nullable=True),
            sa.Column("sold", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("availability", sa.String(length=24), nullable=False, server_default="available"),
            sa.Column("sold_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["seller_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "books", (("ix_books_seller_id", ["seller_id"], False),))

    if not insp.has_table("orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("buyer_id", sa.String(length=36), nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            sa.Column("book_id", sa.String(length=36), nullable=True),
            sa.Column("buyer_full_name", sa.String(length=160), nullable=True),
            sa.Column("buyer_email", sa.String(length=255), nullable=True),
            sa.Column("buyer_phone_number", sa.String(length=32), nullable=True),
            sa.Column("seller_full_name", sa.String(length=160), nullable=True),
            sa.Column("seller_email", sa.String(length=255), nullable=True),
            sa.Column("seller_phone_number", sa.String(length=32), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("book_price_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("delivery_fee_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("platform_fee_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("items_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("payment_provider", sa.String(length=32), nullable=True),
            sa.Column("payment_reference", sa.String(length=128), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            sa.Column("refund_status", sa.String(length=32), nullable=True),
            sa.Column("refunded_at", sa.DateTime(), nullable=True),
            sa.Column("pickup_type", sa.String(length=16), nullable=False, server_default="door"),
            sa.Column("delivery_type", sa.String(length=16), nullable=False, server_default="door"),
            sa.Column("delivery_option", sa.String(length=64), nullable=True),
            sa.Column("selected_courier_slug", sa.String(length=64), nullable=True),
            sa.Column("selected_service_code", sa.String(length=64), nullable=True),
            sa.Column("selected_shipping_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("pickup_locker_location_id", sa.String(length=64), nullable=True),
            sa.Column("pickup_locker_provider_slug", sa.String(length=64), nullable=True),
            sa.Column("pickup_locker_data_json", sa.Text(), nullable=True),
            sa.Column("delivery_locker_location_id", sa.String(length=64), nullable=True),
            sa.Column("delivery_locker_provider_slug", sa.String(length=64), nullable=True),
            sa.Column("delivery_locker_data_json", sa.Text(), nullable=True),
            sa.Column("pickup_address_encrypted", sa.Text(), nullable=True),
            sa.Column("shipping_address_encrypted", sa.Text(), nullable=True),
            sa.Column("address_encryption_version", sa.Integer(), nullable=True),
            sa.Column("committed_at", sa.DateTime(), nullable=True),
            sa.Column("commit_deadline", sa.DateTime(), nullable=True),
            sa.Column("commit_attempt_id", sa.String(length=64), nullable=True),
            sa.Column("commit_attempt_at", sa.DateTime(), nullable=True),
            sa.Column("decline_reason", sa.Text(), nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("tracking_number", sa.String(length=128), nullable=True),
            sa.Column("tracking_data_json", sa.Text(), nullable=True),
            sa.Column("delivery_status", sa.String(length=32), nullable=True),
            sa.Column("delivery_data_json", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["buyer_id"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["seller_id"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["book_id"], ["books.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        insp,
        "orders",
        (
            ("ix_orders_buyer_id", ["buyer_id"], False),
            ("ix_orders_seller_id", ["seller_id"], False),
            ("ix_orders_book_id", ["book_id"], False),
            ("ix_orders_status", ["status"], False),
            ("ix_orders_payment_reference", ["payment_reference"], True),
            ("ix_orders_commit_deadline", ["commit_deadline"], False),
            ("ix_orders_tracking_number", ["tracking_number"], False),
        ),
    )

    if not insp.has_table("buyer_feedback_orders"):
        op.create_table(
            "buyer_feedback_orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("buyer_id", sa.String(length=36), nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            sa.Column("book_id", sa.String(length=36), nullable=True),
            sa.Column("buyer_status", sa.String(length=16), nullable=False),
            sa.Column("buyer_feedback", sa.Text(), nullable=True),
            sa.Column("order_amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("order_total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("order_status", sa.String(length=32), nullable=True),
            sa.Column("delivery_status", sa.String(length=32), nullable=True),
            sa.Column("tracking_number", sa.String(length=128), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        insp,
        "buyer_feedback_orders",
        (
            ("ix_buyer_feedback_orders_order_id", ["order_id"], True),
            ("ix_buyer_feedback_orders_buyer_id", ["buyer_id"], False),
            ("ix_buyer_feedback_orders_seller_id", ["seller_id"], False),
        ),
    )

    if not insp.has_table("user_wallets"):
        op.create_table(
            "user_wallets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("available_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("pending_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.CheckConstraint("available_balance >= 0", name="ck_user_wallets_available_nonneg"),
            sa.CheckConstraint("pending_balance >= 0", name="ck_user_wallets_pending_nonneg"),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "user_wallets", (("ix_user_wallets_user_id", ["user_id"], True),))

    if not insp.has_table("wallet_transactions"):
        op.create_table(
            "wallet_transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=16), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
            sa.Column("reference_order_id", sa.String(length=36), nullable=True),
            sa.Column("reference_payout_id", sa.String(length=36), nullable=True),
            sa.Column("reason", sa.String(length=255), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("reference_order_id", "type", name="uq_wallet_txn_order_type"),
            sa.UniqueConstraint("reference_payout_id", "type", name="uq_wallet_txn_payout_type"),
        )
    _create_indexes(
        insp,
        "wallet_transactions",
        (
            ("ix_wallet_transactions_user_id", ["user_id"], False),
            ("ix_wallet_transactions_reference_order_id", ["reference_order_id"], False),
            ("ix_wallet_transactions_reference_payout_id", ["reference_payout_id"], False),
        ),
    )

    if not insp.has_table("payout_requests"):
        op.create_table(
            "payout_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("processed_by", sa.String(length=36), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("approved_at", sa.DateTime(), nullable=True),
            sa.Column("denied_at", sa.DateTime(), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        insp,
        "payout_requests",
        (
            ("ix_payout_requests_user_id", ["user_id"], False),
            ("ix_payout_requests_status", ["status"], False),
        ),
    )

    if not insp.has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=True),
            sa.Column("type", sa.String(length=48), nullable=False, server_default="info"),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        insp,
        "notifications",
        (
            ("ix_notifications_user_id", ["user_id"], False),
            ("ix_notifications_order_id", ["order_id"], False),
        ),
    )

    if not insp.has_table("webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("event_id", sa.String(length=160), nullable=False),
            sa.Column("reference", sa.String(length=128), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("payload_hash", sa.String(length=128), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("event_id", name="uq_webhook_events_event_id"),
        )

    if not insp.has_table("platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("subject_type", sa.String(length=80), nullable=True),
            sa.Column("subject_id", sa.String(length=120), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("idempotency_key", sa.String(length=180), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key", name="uq_platform_events_idempotency_key"),
        )
    _create_indexes(
        insp,
        "platform_events",
        (
            ("ix_platform_events_created_at", ["created_at"], False),
            ("ix_platform_events_event_type", ["event_type"], False),
            ("ix_platform_events_actor_user_id", ["actor_user_id"], False),
            ("ix_platform_events_subject_id", ["subject_id"], False),
        ),
    )


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    for table_name in (
        "platform_events",
        "webhook_events",
        "notifications",
        "payout_requests",
        "wallet_transactions",
        "user_wallets",
        "buyer_feedback_orders",
        "orders",
        "books",
        "profiles",
    ):
        if insp.has_table(table_name):
            op.drop_table(table_name)
