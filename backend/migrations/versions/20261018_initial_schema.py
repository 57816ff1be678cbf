"""Initial schema: catalog, orders, inventory ledger, sequence buckets

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("address", sa.Text(), nullable=False, server_default=""),
        sa.Column("tax_type", sa.String(16), nullable=False, server_default="NON_PPN"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_active", ["is_active"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("unit", sa.String(50), nullable=False, server_default="PCS"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_is_active", ["is_active"], unique=False)

    op.create_table(
        "customer_prices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "product_id", name="uq_customer_prices_customer_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_prices", schema=None) as batch_op:
        batch_op.create_index("ix_customer_prices_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_customer_prices_product_id", ["product_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=True),
        sa.Column("previous_invoice_number", sa.String(50), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("customer_code", sa.String(100), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("remaining_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_notes", sa.String(500), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("inventory_deducted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.UniqueConstraint("invoice_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_order_date", ["order_date"], unique=False)
        batch_op.create_index("ix_orders_invoice_date", ["invoice_date"], unique=False)
        batch_op.create_index("ix_orders_is_deleted", ["is_deleted"], unique=False)
        batch_op.create_index(
            "ix_orders_pending_invoice", ["is_deleted", "inventory_deducted", "invoice_date"], unique=False
        )
        batch_op.create_index("ix_orders_customer_order_date", ["customer_id", "order_date"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("customer_price_id", sa.Integer(), nullable=True),
        sa.Column("product_code", sa.String(50), nullable=False),
        sa.Column("product_name", sa.String(300), nullable=False),
        sa.Column("unit", sa.String(50), nullable=False, server_default="PCS"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["customer_price_id"], ["customer_prices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        # no ON DELETE: movements outlive the order they reference
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_movements_kind", ["kind"], unique=False)
        batch_op.create_index("ix_inventory_movements_business_date", ["business_date"], unique=False)
        batch_op.create_index("ix_inv_movements_product_date", ["product_id", "business_date"], unique=False)
        batch_op.create_index("ix_inv_movements_order_product", ["order_id", "product_id"], unique=False)

    op.create_table(
        "daily_inventory_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("opening_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("incoming_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("adjustment_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("minimum_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "business_date", name="uq_daily_snapshots_product_date"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("daily_inventory_snapshots", schema=None) as batch_op:
        batch_op.create_index("ix_daily_inventory_snapshots_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_daily_snapshots_date_active", ["business_date", "is_active"], unique=False)

    op.create_table(
        "sequence_buckets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sequence_name", sa.String(32), nullable=False),
        sa.Column("bucket_key", sa.String(16), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sequence_name", "bucket_key", name="uq_sequence_buckets_name_bucket"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("sequence_buckets")

    with op.batch_alter_table("daily_inventory_snapshots", schema=None) as batch_op:
        batch_op.drop_index("ix_daily_snapshots_date_active")
        batch_op.drop_index("ix_daily_inventory_snapshots_product_id")
    op.drop_table("daily_inventory_snapshots")

    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.drop_index("ix_inv_movements_order_product")
        batch_op.drop_index("ix_inv_movements_product_date")
        batch_op.drop_index("ix_inventory_movements_business_date")
        batch_op.drop_index("ix_inventory_movements_kind")
        batch_op.drop_index("ix_inventory_movements_product_id")
    op.drop_table("inventory_movements")

    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.drop_index("ix_order_items_product_id")
        batch_op.drop_index("ix_order_items_order_id")
    op.drop_table("order_items")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_index("ix_orders_customer_order_date")
        batch_op.drop_index("ix_orders_pending_invoice")
        batch_op.drop_index("ix_orders_is_deleted")
        batch_op.drop_index("ix_orders_invoice_date")
        batch_op.drop_index("ix_orders_order_date")
        batch_op.drop_index("ix_orders_customer_id")
    op.drop_table("orders")

    with op.batch_alter_table("customer_prices", schema=None) as batch_op:
        batch_op.drop_index("ix_customer_prices_product_id")
        batch_op.drop_index("ix_customer_prices_customer_id")
    op.drop_table("customer_prices")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_is_active")
    op.drop_table("products")

    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.drop_index("ix_customers_active")
    op.drop_table("customers")
