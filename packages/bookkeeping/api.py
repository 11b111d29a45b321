"""Import orchestration: normalize → check duplicates → persist.

These are the entry points the CLI and webhook handlers call. Each takes an
open SQLAlchemy session; committing is the caller's job (``session_scope``).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .matcher import check_duplicates
from .models import ImportCandidate, ImportOutcome, ImportPreview, TransactionRecord
from .normalizers import SourceProfile, normalize_batch
from .persistence import insert_transactions, ledger_lookup, resolve_projects

_log = get_logger("bookkeeping.api")

RawItem = Mapping[str, Any] | ImportCandidate | TransactionRecord


def preview_import(
    raws: Iterable[RawItem],
    *,
    session: Session,
    profile: SourceProfile | str | None = None,
    default_currency: str | None = None,
    strict: bool = True,
) -> ImportPreview:
    """Split a raw batch into new, duplicate and rejected items without writing.

    With ``strict=False`` a failed ledger read returns every accepted item as
    new and sets ``lookup_failed`` so the caller can warn the operator.
    """

    batch = normalize_batch(raws, profile=profile, default_currency=default_currency)
    check = check_duplicates(batch.accepted, ledger_lookup(session), strict=strict)

    new: list[ImportCandidate] = []
    duplicates: list[ImportCandidate] = []
    for c in batch.accepted:
        (duplicates if check.is_duplicate(c.record) else new).append(c)

    _log.info(
        "preview:summary new=%d duplicates=%d rejected=%d lookup_failed=%s",
        len(new),
        len(duplicates),
        len(batch.rejected),
        check.lookup_failed,
    )
    return ImportPreview(
        new=new,
        duplicates=duplicates,
        rejected=batch.rejected,
        details=check.details,
        lookup_failed=check.lookup_failed,
    )


def import_transactions(
    raws: Iterable[RawItem],
    *,
    session: Session,
    profile: SourceProfile | str | None = None,
    default_currency: str | None = None,
    skip_duplicates: bool = False,
    strict: bool = True,
    today: date | None = None,
) -> ImportOutcome:
    """Normalize and persist a raw batch.

    Rejected items are reported in ``errors`` and never abort the batch.
    Rows already in the ledger are skipped by reference; with
    ``skip_duplicates`` the tiered matcher also drops heuristic matches
    before writing.
    """

    batch = normalize_batch(raws, profile=profile, default_currency=default_currency)
    candidates = resolve_projects(session, batch.accepted)

    dropped = 0
    if skip_duplicates and candidates:
        check = check_duplicates(candidates, ledger_lookup(session), strict=strict)
        kept = [c for c in candidates if not check.is_duplicate(c.record)]
        dropped = len(candidates) - len(kept)
        candidates = kept

    outcome = insert_transactions(session, candidates, today=today)
    errors = [f"row {r.position + 1}: {r.reason}" for r in batch.rejected]

    _log.info(
        "import:summary imported=%d skipped=%d rejected=%d",
        outcome.imported,
        outcome.skipped + dropped,
        len(errors),
    )
    return ImportOutcome(
        imported=outcome.imported,
        skipped=outcome.skipped + dropped,
        errors=errors,
    )


__all__ = ["preview_import", "import_transactions"]
