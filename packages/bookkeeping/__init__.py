"""Ledger import, duplicate reconciliation and reporting for a small business.

The matching core is pure: :func:`normalize_record` turns raw import payloads
into :class:`TransactionRecord` values and :func:`find_duplicates` compares them
against a read-only projection of the ledger. Database-backed entry points live
in :mod:`bookkeeping.api`.
"""

from .errors import LookupUnavailable, NormalizationError, WebhookRejected
from .matcher import check_duplicates, find_duplicates
from .models import (
    DuplicateCheck,
    ImportCandidate,
    LedgerRow,
    MatchDetail,
    MatchTier,
    SourceKind,
    TransactionRecord,
)
from .normalizers import normalize_batch, normalize_candidate, normalize_record

__all__ = [
    "LookupUnavailable",
    "NormalizationError",
    "WebhookRejected",
    "check_duplicates",
    "find_duplicates",
    "DuplicateCheck",
    "ImportCandidate",
    "LedgerRow",
    "MatchDetail",
    "MatchTier",
    "SourceKind",
    "TransactionRecord",
    "normalize_batch",
    "normalize_candidate",
    "normalize_record",
]
