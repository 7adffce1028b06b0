"""Create members, orders, order items, point ledger and order timeline."""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_01_commerce_core"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

ORDER_STATUSES = (
    "PENDING",
    "PENDING_PAYMENT",
    "PAYMENT_COMPLETED",
    "PREPARING",
    "SHIPPING",
    "DELIVERED",
    "PURCHASE_COMPLETED",
    "CANCELLED",
    "RETURNED",
)
# Enum columns persist member names.
STATE_EVENT_TYPES = ("STATE_CHANGE", "ITEM_CORRECTION", "REWARD_ISSUED", "REWARD_FAILED")
STATE_EVENT_ACTORS = ("MEMBER", "ADMIN", "SYSTEM")


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column(
            "grade",
            sa.Enum("SILVER", "GOLD", "VIP", name="member_grade_enum"),
            nullable=False,
            server_default="SILVER",
        ),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "DORMANT", "WITHDRAWN", name="member_status_enum"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column(
            "role",
            sa.Enum("USER", "ADMIN", name="member_role_enum"),
            nullable=False,
            server_default="USER",
        ),
        sa.Column("grade_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_members_email", "members", ["email"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="order_status_enum"),
            nullable=False,
            server_default="PENDING_PAYMENT",
        ),
        sa.Column("total_price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("used_point", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_price >= 0", name="ck_orders_total_price_non_negative"),
        sa.CheckConstraint("used_point >= 0", name="ck_orders_used_point_non_negative"),
    )
    op.create_index("ix_orders_member_id", "orders", ["member_id"])

    op.create_table(
        "order_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "order_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("option_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(), nullable=True),
        sa.Column("sale_price", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.CheckConstraint("sale_price >= 0", name="ck_order_items_sale_price_non_negative"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "point_ledger",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount <> 0", name="ck_point_ledger_amount_non_zero"),
    )
    op.create_index("ix_point_ledger_member_created", "point_ledger", ["member_id", "created_at"])
    op.create_index("ix_point_ledger_order_id", "point_ledger", ["order_id"])

    op.create_table(
        "order_state_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "order_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.Enum(*STATE_EVENT_TYPES, name="order_state_event_type_enum"), nullable=False),
        sa.Column("actor_type", sa.Enum(*STATE_EVENT_ACTORS, name="order_state_actor_type_enum"), nullable=True),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("from_status", sa.String(length=64), nullable=True),
        sa.Column("to_status", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_order_state_events_order_id_created_at",
        "order_state_events",
        ["order_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_order_state_events_order_id_created_at", table_name="order_state_events")
    op.drop_table("order_state_events")
    op.drop_index("ix_point_ledger_order_id", table_name="point_ledger")
    op.drop_index("ix_point_ledger_member_created", table_name="point_ledger")
    op.drop_table("point_ledger")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_member_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_members_email", table_name="members")
    op.drop_table("members")

    conn = op.get_bind()
    for enum_name in (
        "order_state_actor_type_enum",
        "order_state_event_type_enum",
        "order_status_enum",
        "member_role_enum",
        "member_status_enum",
        "member_grade_enum",
    ):
        sa.Enum(name=enum_name).drop(conn, checkfirst=True)
