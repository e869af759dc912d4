"""initial schema - order mirror, numbering, journals, sync bookkeeping

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.BigInteger(), nullable=False),
        sa.Column("account_id", sa.String(100), nullable=False),
        sa.Column("number", sa.String(50)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("currency", sa.String(10)),
        sa.Column("date_created", sa.DateTime(), nullable=False),
        sa.Column("date_modified", sa.DateTime()),
        sa.Column("total", sa.String(32)),
        sa.Column("total_tax", sa.String(32)),
        sa.Column("shipping_total", sa.String(32)),
        sa.Column("shipping_tax", sa.String(32)),
        sa.Column("customer_id", sa.BigInteger()),
        sa.Column("billing", sa.JSON()),
        sa.Column("shipping", sa.JSON()),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column("tax_lines", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_orders_external_account", "orders", ["external_id", "account_id"], unique=True)
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_date_created", "orders", ["date_created"])
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.BigInteger(), nullable=False),
        sa.Column("account_id", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("first_name", sa.String(255)),
        sa.Column("last_name", sa.String(255)),
        sa.Column("company", sa.String(255)),
        sa.Column("phone", sa.String(100)),
        sa.Column("billing", sa.JSON()),
        sa.Column("shipping", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index(
        "ix_customers_external_account", "customers", ["external_id", "account_id"], unique=True
    )
    op.create_index("ix_customers_email", "customers", ["email"])

    op.create_table(
        "document_numbers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("number", sa.String(50), nullable=False, unique=True),
        sa.Column("owner_entity_id", sa.String(64), unique=True),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("released_at", sa.DateTime()),
        sa.UniqueConstraint("document_type", "year", "sequence", name="uq_docnum_type_year_seq"),
    )
    op.create_index("ix_docnum_type_year", "document_numbers", ["document_type", "year"])

    op.create_table(
        "sales_journals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("number", sa.String(50), nullable=False, unique=True),
        sa.Column("date", sa.Date(), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("orders_included", sa.JSON(), nullable=False),
        sa.Column("lines", sa.JSON(), nullable=False),
        sa.Column("totals", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "sync_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("account_id", sa.String(100), nullable=False),
        sa.Column("last_synced_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index(
        "ix_sync_state_source_account", "sync_state", ["source", "account_id"], unique=True
    )

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime()),
        sa.Column("duration_seconds", sa.Float()),
        sa.Column("row_counts", sa.JSON()),
        sa.Column("errors", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_sync_source_time", "sync_logs", ["source", "started_at"])


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE — only for dev/test environments."""
    for table in ("sync_logs", "sync_state", "sales_journals", "document_numbers", "customers", "orders"):
        op.drop_table(table)
