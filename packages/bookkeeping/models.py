"""Data models for ledger import and duplicate reconciliation.

Two layers are kept apart on purpose:

- :class:`TransactionRecord` is the canonical *matching* form: provenance,
  identifiers, minor-unit amount and currency. It is what the matcher sees.
- :class:`ImportCandidate` wraps a record together with the ledger columns the
  persistence layer writes (direction, date, counterparty, ...).

Both are ephemeral: built per request from raw payloads and discarded after
the import or duplicate check. Only ledger rows persist.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class SourceKind(str, Enum):
    """Mutually exclusive provenance of a transaction."""

    STRIPE = "stripe"
    BANK = "bank"


class Direction(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class MatchTier(IntEnum):
    """Matching strategies ranked by confidence (1 is highest)."""

    ARCHIVE_REFERENCE = 1
    PAYMENT_ID = 2
    AMOUNT_CURRENCY = 3


def normalize_identifier(value: Any) -> str | None:
    """Trim and lower-case an identifier; blank values become ``None``."""

    if value is None:
        return None
    s = str(value).strip().lower()
    return s or None


# ---------------------------------------------------------------------------
# Matching form
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """Canonical comparison tuple for one candidate transaction.

    ``primary_id`` is the processor payment id (``stripe``) or the statement
    archive reference (``bank``). ``secondary_id`` is the bank reference, used
    only when ``primary_id`` is absent. ``composite_key`` is the bank
    last-resort ``date + amount + counterparty`` key. ``amount`` is a
    non-negative integer in minor units.
    """

    source_kind: SourceKind
    primary_id: str | None
    secondary_id: str | None
    amount: int
    currency: str
    composite_key: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.source_kind, SourceKind):
            object.__setattr__(self, "source_kind", SourceKind(self.source_kind))
        # Booleans are ints; disallow them explicitly.
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"amount must be an integer in minor units, got {self.amount!r}")
        if self.amount < 0:
            raise ValueError("amount must be non-negative; direction is carried separately")
        cur = (self.currency or "").strip().lower()
        if len(cur) != 3 or not cur.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")
        object.__setattr__(self, "currency", cur)
        if self.identifier is None:
            raise ValueError("a transaction record needs at least one identifier")

    @property
    def identifier(self) -> str | None:
        """Normalized derived identifier (primary → secondary → composite)."""

        return (
            normalize_identifier(self.primary_id)
            or normalize_identifier(self.secondary_id)
            or normalize_identifier(self.composite_key)
        )

    @property
    def archive_reference(self) -> str | None:
        if self.source_kind is SourceKind.BANK:
            return normalize_identifier(self.primary_id)
        return None

    @property
    def payment_id(self) -> str | None:
        if self.source_kind is SourceKind.STRIPE:
            return normalize_identifier(self.primary_id)
        return None


@dataclass(frozen=True, slots=True)
class LedgerRow:
    """Read-only projection of a persisted ledger row used for matching."""

    ledger_id: int | str | None
    source_kind: str
    source_reference: str | None
    archive_reference: str | None
    amount: int
    currency: str
    bank_reference: str | None = None

    @property
    def identifier(self) -> str | None:
        """The row's authoritative identifier as stored (not normalized)."""

        if self.source_kind == SourceKind.BANK.value:
            candidates = (self.archive_reference, self.source_reference, self.bank_reference)
        else:
            candidates = (self.source_reference,)
        for c in candidates:
            if c is not None and str(c).strip():
                return str(c).strip()
        return None


@dataclass(frozen=True, slots=True)
class MatchDetail:
    candidate_id: str
    matched_ledger_id: str
    tier: MatchTier


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    """Outcome of a duplicate check.

    ``lookup_failed`` is only ever True when the caller opted into the
    non-strict policy; the empty ``matched_ids`` then means "unknown", not
    "no duplicates".
    """

    matched_ids: frozenset[str]
    details: list[MatchDetail] = field(default_factory=list)
    lookup_failed: bool = False

    def is_duplicate(self, record: TransactionRecord) -> bool:
        return record.identifier in self.matched_ids


# ---------------------------------------------------------------------------
# Ledger-facing candidates and batch results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportCandidate:
    record: TransactionRecord
    direction: Direction
    transaction_date: date | None = None
    description: str | None = None
    counterparty: str | None = None
    customer_email: str | None = None
    transaction_type: str | None = None
    category: str | None = None
    project_id: int | None = None
    project_name: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def bank_reference(self) -> str | None:
        if self.record.source_kind is SourceKind.BANK:
            return self.record.secondary_id
        return None

    @property
    def source_reference(self) -> str | None:
        """Reference written to ``transactions.source_reference``."""

        r = self.record
        return r.primary_id or r.secondary_id or r.composite_key


@dataclass(frozen=True, slots=True)
class RejectedItem:
    position: int
    reason: str
    raw: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class NormalizedBatch:
    accepted: list[ImportCandidate]
    rejected: list[RejectedItem]


@dataclass(frozen=True, slots=True)
class ImportOutcome:
    imported: int
    skipped: int
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ImportPreview:
    """Reviewable split of an import batch before anything is written."""

    new: list[ImportCandidate]
    duplicates: list[ImportCandidate]
    rejected: list[RejectedItem]
    details: list[MatchDetail]
    lookup_failed: bool = False

    @property
    def needs_review(self) -> list[ImportCandidate]:
        """Duplicates matched only by the amount/currency heuristic."""

        heuristic = {
            d.candidate_id for d in self.details if d.tier is MatchTier.AMOUNT_CURRENCY
        }
        return [c for c in self.duplicates if c.record.identifier in heuristic]


# ---------------------------------------------------------------------------
# DTOs for LLM screenshot extraction
# ---------------------------------------------------------------------------


class ExtractedTransaction(BaseModel):
    """One processor transaction as read off a screenshot by the model.

    ``amount`` is in major units (the prompt asks for ``3999`` for
    ``NOK 3,999.00``). Extra keys returned by the model are ignored.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    stripe_payment_id: str
    amount: float
    currency: str
    date: str | None = None
    customer_email: str | None = None
    status: str | None = None

    @field_validator("stripe_payment_id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("stripe_payment_id must be non-empty")
        return v

    @field_validator("amount")
    @classmethod
    def _amount_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("amount must be non-negative")
        return v

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        v = v.lower()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return v


__all__ = [
    "SourceKind",
    "Direction",
    "MatchTier",
    "normalize_identifier",
    "TransactionRecord",
    "LedgerRow",
    "MatchDetail",
    "DuplicateCheck",
    "ImportCandidate",
    "RejectedItem",
    "NormalizedBatch",
    "ImportOutcome",
    "ImportPreview",
    "ExtractedTransaction",
]
