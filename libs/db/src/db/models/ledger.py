from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: projects
# ---------------------------


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # 'active', 'completed', 'on_hold'
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'active'"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Core: transactions
# ---------------------------


class LedgerTransaction(Base):
    """One persisted ledger row.

    ``amount`` is always a non-negative integer in minor units; ``type``
    carries the direction. Provenance is split across two mutually exclusive
    uniqueness domains: processor rows are unique on ``source_reference`` and
    bank rows are unique on ``archive_reference`` (both partial indexes).
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'usd'"))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    # Processor payment id, invoice number, bank reference, ...
    source_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    counterparty: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Bank statement columns ("Referanse", "Arkivref.", "Transaksjonstype")
    bank_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    archive_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("type in ('income','expense')", name="ck_transactions_type"),
        CheckConstraint(
            "source_type in ('stripe','invoice','bank','manual')",
            name="ck_transactions_source_type",
        ),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        Index(
            "uq_transactions_stripe_source_ref",
            "source_reference",
            unique=True,
            postgresql_where=text("source_type = 'stripe' AND source_reference IS NOT NULL"),
            sqlite_where=text("source_type = 'stripe' AND source_reference IS NOT NULL"),
        ),
        Index(
            "uq_transactions_bank_archive_ref",
            "archive_reference",
            unique=True,
            postgresql_where=text("source_type = 'bank' AND archive_reference IS NOT NULL"),
            sqlite_where=text("source_type = 'bank' AND archive_reference IS NOT NULL"),
        ),
        Index("ix_transactions_date", "transaction_date"),
        Index("ix_transactions_source_type", "source_type"),
        Index("ix_transactions_project_id", "project_id"),
    )


# ---------------------------
# Access: allowed_users
# ---------------------------


class AllowedUser(Base):
    __tablename__ = "allowed_users"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # Stored lower-cased; lookups compare lower-cased input.
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


__all__ = [
    "Base",
    "Project",
    "LedgerTransaction",
    "AllowedUser",
]
