"""Shared SQLAlchemy models registry for the ledger database."""

from .ledger import AllowedUser, Base, LedgerTransaction, Project

__all__ = [
    "Base",
    "AllowedUser",
    "LedgerTransaction",
    "Project",
]
