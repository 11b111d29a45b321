"""Tiered duplicate matcher: which candidates already exist in the ledger.

For each candidate the tiers are tried in order against every existing row;
the first satisfied tier stops the scan for that candidate:

1. archive reference: bank candidate identifier == bank row archive reference
2. payment id: processor candidate identifier == processor row reference
3. amount + currency equal and identifier lengths within
   :data:`TIER3_MAX_LENGTH_DIFF` characters

Tier 3 tolerates OCR misreads of an identifier and is knowingly prone to
false positives when unrelated transactions share an amount and currency.
Its matches are logged at WARNING so they can be reviewed.

:func:`find_duplicates` is pure and synchronous. :func:`check_duplicates`
wraps it with the ledger lookup and the failure policy.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from .errors import LookupUnavailable
from .logging_setup import get_logger
from .models import (
    DuplicateCheck,
    ImportCandidate,
    LedgerRow,
    MatchDetail,
    MatchTier,
    SourceKind,
    TransactionRecord,
    normalize_identifier,
)

TIER3_MAX_LENGTH_DIFF = 5

_log = get_logger("bookkeeping.matcher")


def _as_record(c: TransactionRecord | ImportCandidate) -> TransactionRecord:
    return c.record if isinstance(c, ImportCandidate) else c


def _tier1(rec: TransactionRecord, cid: str, row: LedgerRow) -> bool:
    if rec.source_kind is not SourceKind.BANK or row.source_kind != SourceKind.BANK.value:
        return False
    return normalize_identifier(row.archive_reference) == cid


def _tier2(rec: TransactionRecord, cid: str, row: LedgerRow) -> bool:
    if rec.source_kind is not SourceKind.STRIPE or row.source_kind != SourceKind.STRIPE.value:
        return False
    return normalize_identifier(row.source_reference) == cid


def _tier3(rec: TransactionRecord, cid: str, row: LedgerRow) -> bool:
    row_id = row.identifier
    if row_id is None:
        return False
    if rec.amount != row.amount:
        return False
    if rec.currency != (row.currency or "").strip().lower():
        return False
    return abs(len(cid) - len(row_id)) <= TIER3_MAX_LENGTH_DIFF


_TIERS: tuple[tuple[MatchTier, Callable[[TransactionRecord, str, LedgerRow], bool]], ...] = (
    (MatchTier.ARCHIVE_REFERENCE, _tier1),
    (MatchTier.PAYMENT_ID, _tier2),
    (MatchTier.AMOUNT_CURRENCY, _tier3),
)


def match_one(
    record: TransactionRecord, existing: Sequence[LedgerRow]
) -> tuple[MatchTier, LedgerRow] | None:
    """Return the first ``(tier, row)`` the record matches, or ``None``."""

    cid = record.identifier
    if cid is None:
        return None
    for tier, predicate in _TIERS:
        for row in existing:
            if predicate(record, cid, row):
                return tier, row
    return None


def find_duplicates(
    candidates: Iterable[TransactionRecord | ImportCandidate],
    existing: Sequence[LedgerRow],
) -> DuplicateCheck:
    """Return the normalized identifiers of candidates already in ``existing``.

    ``details`` carries one :class:`MatchDetail` per matched candidate, in
    candidate order.
    """

    matched: set[str] = set()
    details: list[MatchDetail] = []
    for c in candidates:
        rec = _as_record(c)
        hit = match_one(rec, existing)
        if hit is None:
            continue
        tier, row = hit
        cid = rec.identifier
        assert cid is not None  # match_one returns None otherwise
        matched.add(cid)
        ledger_id = row.identifier or str(row.ledger_id)
        details.append(MatchDetail(candidate_id=cid, matched_ledger_id=ledger_id, tier=tier))
        if tier is MatchTier.AMOUNT_CURRENCY:
            _log.warning(
                "duplicates:heuristic candidate=%s ledger=%s amount=%s currency=%s",
                cid,
                ledger_id,
                rec.amount,
                rec.currency,
            )
        else:
            _log.debug("duplicates:matched candidate=%s ledger=%s tier=%d", cid, ledger_id, tier)

    _log.info("duplicates:summary candidates_matched=%d existing=%d", len(details), len(existing))
    return DuplicateCheck(matched_ids=frozenset(matched), details=details)


def check_duplicates(
    candidates: Iterable[TransactionRecord | ImportCandidate],
    lookup: Callable[[], Sequence[LedgerRow]],
    *,
    strict: bool = True,
) -> DuplicateCheck:
    """Fetch the ledger projection with ``lookup`` and run :func:`find_duplicates`.

    When the lookup fails, ``strict`` re-raises as :class:`LookupUnavailable`;
    otherwise a warning is logged and an empty result with
    ``lookup_failed=True`` is returned.
    """

    try:
        existing = lookup()
    except Exception as e:
        if strict:
            if isinstance(e, LookupUnavailable):
                raise
            raise LookupUnavailable(f"ledger lookup failed: {e}") from e
        _log.warning("duplicates:lookup_failed policy=soft error=%s", e)
        return DuplicateCheck(matched_ids=frozenset(), details=[], lookup_failed=True)
    return find_duplicates(candidates, existing)


__all__ = ["TIER3_MAX_LENGTH_DIFF", "match_one", "find_duplicates", "check_duplicates"]
