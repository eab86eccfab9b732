"""Initial schema: orders, ledgers, goods returns, reconciliation intents

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = False):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False))
    return cols


def upgrade():
    op.create_table(
        "firms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("gstin", sa.String(32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("firms", schema=None) as batch_op:
        batch_op.create_index("ix_firms_instance_id", ["instance_id"], unique=False)

    op.create_table(
        "staff_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("staff_members", schema=None) as batch_op:
        batch_op.create_index("ix_staff_members_instance_id", ["instance_id"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("firm_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("nickname", sa.String(128), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("state", sa.String(128), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("market", sa.String(128), nullable=True),
        sa.Column("customer_type", sa.String(16), nullable=False, server_default="Owner"),
        sa.Column("status", sa.String(16), nullable=False, server_default="Approved"),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(updated=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["firm_id"], ["firms.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_instance_id", ["instance_id"], unique=False)
        batch_op.create_index("ix_customers_firm_id", ["firm_id"], unique=False)
        batch_op.create_index("ix_customers_instance_name", ["instance_id", "name"], unique=False)

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("brand", sa.String(128), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("quality", sa.String(128), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("warehouse", sa.String(128), nullable=True),
        sa.Column("location", sa.String(128), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="Active"),
        *_timestamps(updated=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_nonneg"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_items", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_items_instance_id", ["instance_id"], unique=False)
        batch_op.create_index("ix_inventory_items_identity", ["instance_id", "brand", "model", "quality"], unique=False)

    op.create_table(
        "portal_links",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("warehouse", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="Enabled"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_portal_links_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "portal_link_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("link_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["link_id"], ["portal_links.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("link_id", "inventory_item_id", name="uq_portal_link_items_link_item"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("portal_link_items", schema=None) as batch_op:
        batch_op.create_index("ix_portal_link_items_inventory_item_id", ["inventory_item_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="fresh"),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_subtext", sa.String(255), nullable=True),
        sa.Column("warehouse", sa.String(128), nullable=True),
        sa.Column("order_mode", sa.String(16), nullable=False, server_default="Offline"),
        sa.Column("invoice_status", sa.String(16), nullable=False, server_default="Pending"),
        sa.Column("assigned_to_id", sa.Integer(), nullable=True),
        sa.Column("assigned_to_name", sa.String(128), nullable=True),
        sa.Column("checked_by", sa.String(128), nullable=True),
        sa.Column("cargo_name", sa.String(128), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("billed_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(updated=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["staff_members.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_instance_id", ["instance_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_instance_status", ["instance_id", "status"], unique=False)
        batch_op.create_index("ix_orders_customer_created", ["customer_id", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=True),
        sa.Column("brand", sa.String(128), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("quality", sa.String(128), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("ordered_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("fulfill_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("display_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_inventory_item_id", ["inventory_item_id"], unique=False)

    op.create_table(
        "inventory_logs",
        sa.Column("id", sa.String(160), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("effect_kind", sa.String(16), nullable=False),
        sa.Column("model_name", sa.String(255), nullable=True),
        sa.Column("shop_name", sa.String(255), nullable=True),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("inventory_logs", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_logs_item_id", ["item_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_inventory_logs_instance_created", ["instance_id", "created_at"], unique=False)

    op.create_table(
        "reconciliation_intents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("intent_key", sa.String(160), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("order_version", sa.Integer(), nullable=False),
        sa.Column("balance_delta_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("plan_json", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("actor_role", sa.String(32), nullable=True),
        sa.Column("actor_name", sa.String(128), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("intent_key", name="uq_reconciliation_intents_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("reconciliation_intents", schema=None) as batch_op:
        batch_op.create_index("ix_reconciliation_intents_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_reconciliation_intents_status", ["status", "created_at"], unique=False)

    op.create_table(
        "goods_returns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("return_number", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("ledger_order_id", sa.Integer(), nullable=True),
        sa.Column("mode", sa.String(16), nullable=False, server_default="LINES"),
        sa.Column("total_credit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_by_name", sa.String(128), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["ledger_order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("return_number", name="uq_goods_returns_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("goods_returns", schema=None) as batch_op:
        batch_op.create_index("ix_goods_returns_instance_id", ["instance_id"], unique=False)
        batch_op.create_index("ix_goods_returns_customer_id", ["customer_id"], unique=False)

    op.create_table(
        "goods_return_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=True),
        sa.Column("brand", sa.String(128), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("quality", sa.String(128), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("warehouse", sa.String(128), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["return_id"], ["goods_returns.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("goods_return_lines", schema=None) as batch_op:
        batch_op.create_index("ix_goods_return_lines_return_id", ["return_id"], unique=False)

    op.create_table(
        "stock_room_removals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=True),
        sa.Column("identity_key", sa.String(400), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_by_name", sa.String(128), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_room_removals", schema=None) as batch_op:
        batch_op.create_index("ix_stock_room_removals_instance_id", ["instance_id"], unique=False)
        batch_op.create_index("ix_stock_room_removals_instance_key", ["instance_id", "identity_key"], unique=False)


def downgrade():
    for table in (
        "stock_room_removals",
        "goods_return_lines",
        "goods_returns",
        "reconciliation_intents",
        "inventory_logs",
        "order_items",
        "orders",
        "portal_link_items",
        "portal_links",
        "inventory_items",
        "customers",
        "staff_members",
        "firms",
    ):
        op.drop_table(table)
