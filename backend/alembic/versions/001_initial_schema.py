"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-04-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _money(name, nullable=False, default=True):
    if default:
        return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, server_default="0")
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable)


def upgrade() -> None:
    # Staff
    op.create_table(
        "staff",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("pin_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # Menu lookups
    op.create_table(
        "tax_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "tax_components",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tax_group_id", sa.Integer(), sa.ForeignKey("tax_groups.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("code", sa.String(10), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
    )
    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        _money("base_price", default=False),
        sa.Column("item_type", sa.String(20), nullable=False, server_default="veg"),
        sa.Column("station", sa.String(50), nullable=True),
        sa.Column("counter_type", sa.String(50), nullable=True),
        sa.Column("tax_group_id", sa.Integer(), sa.ForeignKey("tax_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "menu_item_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        _money("price", default=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "addons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        _money("price"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "cancel_reasons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )

    # Floor. tables.current_order_id and table_sessions.order_id get their
    # foreign keys once orders exists.
    op.create_table(
        "tables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("outlet_id", sa.Integer(), nullable=False, server_default="1", index=True),
        sa.Column("table_number", sa.String(20), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("original_capacity", sa.Integer(), nullable=False),
        sa.Column("shape", sa.String(20), nullable=False, server_default="square"),
        sa.Column("status", sa.String(20), nullable=False, server_default="available", index=True),
        sa.Column("merged_into_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="SET NULL"), nullable=True),
        sa.Column("current_order_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "table_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("guest_name", sa.String(100), nullable=True),
        sa.Column("guest_phone", sa.String(20), nullable=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "table_merges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("primary_table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("member_table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("member_capacity", sa.Integer(), nullable=False),
        sa.Column("merged_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("merged_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("unmerged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unmerged_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
    )

    # Orders
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(30), unique=True, nullable=False),
        sa.Column("outlet_id", sa.Integer(), nullable=False, server_default="1", index=True),
        sa.Column("order_type", sa.String(20), nullable=False),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("customer_name", sa.String(100), nullable=True),
        sa.Column("customer_phone", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        _money("subtotal"),
        _money("tax_amount"),
        _money("total_amount"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("tables") as batch_op:
        batch_op.create_foreign_key(
            "fk_tables_current_order_id", "orders", ["current_order_id"], ["id"], ondelete="SET NULL"
        )
    with op.batch_alter_table("table_sessions") as batch_op:
        batch_op.create_foreign_key(
            "fk_table_sessions_order_id", "orders", ["order_id"], ["id"], ondelete="SET NULL"
        )
    # One open session per table
    op.create_index(
        "uq_table_sessions_open_table",
        "table_sessions",
        ["table_id"],
        unique=True,
        sqlite_where=sa.text("status != 'completed'"),
        postgresql_where=sa.text("status != 'completed'"),
    )

    # Kitchen tickets
    op.create_table(
        "kot_tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kot_number", sa.String(30), unique=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("station", sa.String(50), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("printed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancelled_item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("preparing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("preparing_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ready_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("served_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("served_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("menu_item_variants.id"), nullable=True),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("variant_name", sa.String(100), nullable=True),
        sa.Column("item_type", sa.String(20), nullable=False, server_default="veg"),
        sa.Column("station", sa.String(50), nullable=False, server_default="kitchen"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("unit_price", default=False),
        _money("total_price", default=False),
        _money("tax_amount"),
        sa.Column("special_instructions", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("kot_id", sa.Integer(), sa.ForeignKey("kot_tickets.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("added_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancel_approved_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "order_item_addons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("addon_id", sa.Integer(), sa.ForeignKey("addons.id"), nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        _money("price", default=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_table(
        "kot_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kot_id", sa.Integer(), sa.ForeignKey("kot_tickets.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("variant_name", sa.String(100), nullable=True),
        sa.Column("item_type", sa.String(20), nullable=False, server_default="veg"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("cancelled_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("addons_text", sa.String(500), nullable=True),
        sa.Column("special_instructions", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "order_cancel_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("cancel_type", sa.String(10), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=True),
        _money("amount"),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Billing
    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(30), unique=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("invoice_date", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _money("subtotal", default=False),
        _money("discount_amount"),
        _money("taxable_amount", default=False),
        _money("cgst_amount"),
        _money("sgst_amount"),
        _money("igst_amount"),
        _money("vat_amount"),
        _money("cess_amount"),
        _money("total_tax"),
        _money("service_charge"),
        _money("round_off"),
        _money("grand_total", default=False),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("customer_name", sa.String(100), nullable=True),
        sa.Column("customer_phone", sa.String(20), nullable=True),
        sa.Column("customer_gstin", sa.String(20), nullable=True),
        sa.Column("is_interstate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generated_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "uq_invoices_live_order",
        "invoices",
        ["order_id"],
        unique=True,
        sqlite_where=sa.text("NOT is_cancelled"),
        postgresql_where=sa.text("NOT is_cancelled"),
    )
    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("variant_name", sa.String(100), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("unit_price", default=False),
        _money("total_price", default=False),
        _money("tax_amount"),
    )
    op.create_table(
        "invoice_discounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        _money("value", default=False),
        sa.Column("applied_on", sa.String(20), nullable=False),
        _money("amount", default=False),
    )
    op.create_table(
        "duplicate_bill_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("duplicate_number", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("printed_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_number", sa.String(30), unique=True, nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("payment_mode", sa.String(20), nullable=False),
        _money("amount", default=False),
        _money("tip_amount"),
        _money("total_amount", default=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("card_last_four", sa.String(4), nullable=True),
        sa.Column("upi_transaction_id", sa.String(100), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("received_by", sa.Integer(), sa.ForeignKey("staff.id"), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "split_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("payment_mode", sa.String(20), nullable=False),
        _money("amount", default=False),
        sa.Column("card_last_four", sa.String(4), nullable=True),
        sa.Column("upi_transaction_id", sa.String(100), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True),
    )

    # Print queue and numbering
    op.create_table(
        "print_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_type", sa.String(20), nullable=False),
        sa.Column("station", sa.String(50), nullable=False, index=True),
        sa.Column("outlet_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("kot_id", sa.Integer(), sa.ForeignKey("kot_tickets.id", ondelete="SET NULL"), nullable=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reference_number", sa.String(50), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.String(500), nullable=True),
        sa.Column("claimed_by", sa.String(100), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("printed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "document_sequences",
        sa.Column("scope", sa.String(60), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    # Drop tables in reverse order of creation
    op.drop_table("document_sequences")
    op.drop_table("print_jobs")
    op.drop_table("split_payments")
    op.drop_table("payments")
    op.drop_table("duplicate_bill_logs")
    op.drop_table("invoice_discounts")
    op.drop_table("invoice_items")
    op.drop_index("uq_invoices_live_order", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("order_cancel_logs")
    op.drop_table("kot_items")
    op.drop_table("order_item_addons")
    op.drop_table("order_items")
    op.drop_table("kot_tickets")
    op.drop_index("uq_table_sessions_open_table", table_name="table_sessions")
    with op.batch_alter_table("table_sessions") as batch_op:
        batch_op.drop_constraint("fk_table_sessions_order_id", type_="foreignkey")
    with op.batch_alter_table("tables") as batch_op:
        batch_op.drop_constraint("fk_tables_current_order_id", type_="foreignkey")
    op.drop_table("orders")
    op.drop_table("table_merges")
    op.drop_table("table_sessions")
    op.drop_table("tables")
    op.drop_table("cancel_reasons")
    op.drop_table("addons")
    op.drop_table("menu_item_variants")
    op.drop_table("menu_items")
    op.drop_table("tax_components")
    op.drop_table("tax_groups")
    op.drop_table("staff")
