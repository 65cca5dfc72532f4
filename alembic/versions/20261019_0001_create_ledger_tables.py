"""create ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("color", sa.String(length=20), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact_person", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_suppliers_name_lower", "suppliers", [sa.text("lower(name)")], unique=False)

    op.create_table(
        "medicines",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("generic_name", sa.String(length=255), nullable=True),
        sa.Column("category_id", sa.String(length=36), nullable=False),
        sa.Column("supplier_id", sa.String(length=36), nullable=True),
        sa.Column("dosage_form", sa.String(length=30), nullable=False, server_default="tablet"),
        sa.Column("strength", sa.String(length=50), nullable=True),
        sa.Column("manufacturer", sa.String(length=255), nullable=True),
        sa.Column("barcode", sa.String(length=64), nullable=True),
        sa.Column("hsn_code", sa.String(length=20), nullable=True),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_stock_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_prescription", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.CheckConstraint("reorder_level >= 0", name="ck_medicines_reorder_level_non_negative"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )
    op.create_index("ix_medicines_category_id", "medicines", ["category_id"], unique=False)
    op.create_index("ix_medicines_supplier_id", "medicines", ["supplier_id"], unique=False)
    op.create_index("ix_medicines_category_active", "medicines", ["category_id", "is_active"], unique=False)
    op.create_index("ix_medicines_name_lower", "medicines", [sa.text("lower(name)")], unique=False)

    op.create_table(
        "batches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("batch_number", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("initial_quantity", sa.Integer(), nullable=False),
        sa.Column("manufacturing_date", sa.Date(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("supplier_id", sa.String(length=36), nullable=True),
        sa.Column("received_date", sa.Date(), nullable=False),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("disposed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _created_at(),
        sa.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        sa.CheckConstraint("status IN ('active', 'disposed')", name="ck_batches_status"),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("medicine_id", "batch_number", name="uq_batches_medicine_batch_number"),
    )
    op.create_index("ix_batches_medicine_id", "batches", ["medicine_id"], unique=False)
    op.create_index("ix_batches_supplier_id", "batches", ["supplier_id"], unique=False)
    op.create_index(
        "ix_batches_medicine_status_expiry",
        "batches",
        ["medicine_id", "status", "expiry_date"],
        unique=False,
    )
    op.create_index("ix_batches_status_expiry", "batches", ["status", "expiry_date"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("qty_delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=30), nullable=False),
        sa.Column("reference_id", sa.String(length=36), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_movements_medicine_id", "stock_movements", ["medicine_id"], unique=False)
    op.create_index("ix_stock_movements_batch_id", "stock_movements", ["batch_id"], unique=False)
    op.create_index(
        "ix_stock_movements_batch_created_at",
        "stock_movements",
        ["batch_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stock_movements_medicine_created_at",
        "stock_movements",
        ["medicine_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number"),
    )
    op.create_index("ix_sales_created_at", "sales", ["created_at"], unique=False)
    op.create_index("ix_sales_status_created_at", "sales", ["status", "created_at"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("sale_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"], unique=False)
    op.create_index("ix_sale_items_batch_id", "sale_items", ["batch_id"], unique=False)
    op.create_index("ix_sale_items_medicine_id", "sale_items", ["medicine_id"], unique=False)

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alerts_medicine_id", "alerts", ["medicine_id"], unique=False)
    op.create_index("ix_alerts_batch_id", "alerts", ["batch_id"], unique=False)
    op.create_index("ix_alerts_resolved_created_at", "alerts", ["is_resolved", "created_at"], unique=False)
    op.create_index(
        "ix_alerts_type_medicine_batch",
        "alerts",
        ["type", "medicine_id", "batch_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("alerts")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_table("stock_movements")
    op.drop_table("batches")
    op.drop_table("medicines")
    op.drop_table("suppliers")
    op.drop_table("categories")
