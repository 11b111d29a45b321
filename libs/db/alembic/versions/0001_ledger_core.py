# ruff: noqa: I001
"""Ledger core tables: projects, transactions, allowed_users.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # projects
    op.create_table(
        "projects",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'active'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    # transactions
    op.create_table(
        "transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("source_type", sa.Text(), nullable=False),
        sa.Column("source_reference", sa.Text(), nullable=True),
        sa.Column("project_id", sa.BigInteger(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("counterparty", sa.Text(), nullable=True),
        sa.Column("customer_email", sa.Text(), nullable=True),
        sa.Column("bank_reference", sa.Text(), nullable=True),
        sa.Column("archive_reference", sa.Text(), nullable=True),
        sa.Column("transaction_type", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["project_id"],
            ["projects.id"],
            name="fk_transactions_project",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("type in ('income','expense')", name="ck_transactions_type"),
        sa.CheckConstraint(
            "source_type in ('stripe','invoice','bank','manual')",
            name="ck_transactions_source_type",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
    )

    # Two mutually exclusive uniqueness domains
    op.create_index(
        "uq_transactions_stripe_source_ref",
        "transactions",
        ["source_reference"],
        unique=True,
        postgresql_where=sa.text("source_type = 'stripe' AND source_reference IS NOT NULL"),
    )
    op.create_index(
        "uq_transactions_bank_archive_ref",
        "transactions",
        ["archive_reference"],
        unique=True,
        postgresql_where=sa.text("source_type = 'bank' AND archive_reference IS NOT NULL"),
    )
    op.create_index("ix_transactions_date", "transactions", ["transaction_date"], unique=False)
    op.create_index("ix_transactions_source_type", "transactions", ["source_type"], unique=False)
    op.create_index("ix_transactions_project_id", "transactions", ["project_id"], unique=False)

    # allowed_users
    op.create_table(
        "allowed_users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )


def downgrade() -> None:
    op.drop_table("allowed_users")
    op.drop_index("ix_transactions_project_id", table_name="transactions")
    op.drop_index("ix_transactions_source_type", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_index("uq_transactions_bank_archive_ref", table_name="transactions")
    op.drop_index("uq_transactions_stripe_source_ref", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("projects")
