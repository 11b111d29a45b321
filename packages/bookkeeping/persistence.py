"""Ledger reads and idempotent writes for import batches.

Functions here read and write the ``transactions`` table owned by ``libs/db``
(``db.models.ledger``) through a caller-provided session. Callers commit.

Uniqueness domains
------------------
- ``stripe`` rows are unique on ``source_reference`` (processor payment id).
- ``bank`` rows are unique on ``archive_reference``.

Both are partial unique indexes; inserts use ``ON CONFLICT DO NOTHING`` against
the matching index so re-imports are no-ops. An archive reference that occurs
more than once inside one batch is written as ``NULL`` for every row carrying
it, while each of those rows keeps a distinct ``source_reference``.
"""

from __future__ import annotations

import dataclasses
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.ledger import LedgerTransaction, Project

from .errors import LookupUnavailable
from .logging_setup import get_logger
from .models import ImportCandidate, ImportOutcome, LedgerRow, SourceKind, normalize_identifier

_log = get_logger("bookkeeping.persistence")

_STRIPE_INDEX_WHERE = "source_type = 'stripe' AND source_reference IS NOT NULL"
_BANK_INDEX_WHERE = "source_type = 'bank' AND archive_reference IS NOT NULL"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def fetch_ledger_rows(
    session: Session, *, source_kinds: Iterable[SourceKind] | None = None
) -> list[LedgerRow]:
    """Return the matching projection of every ledger row.

    Only identifier fields, amount, currency and source kind are read.
    Database errors surface as :class:`LookupUnavailable`.
    """

    stmt = select(
        LedgerTransaction.id,
        LedgerTransaction.source_type,
        LedgerTransaction.source_reference,
        LedgerTransaction.archive_reference,
        LedgerTransaction.bank_reference,
        LedgerTransaction.amount,
        LedgerTransaction.currency,
    )
    if source_kinds is not None:
        stmt = stmt.where(LedgerTransaction.source_type.in_([k.value for k in source_kinds]))
    try:
        result = session.execute(stmt).all()
    except SQLAlchemyError as e:
        raise LookupUnavailable(f"could not read ledger rows: {e}") from e
    return [
        LedgerRow(
            ledger_id=r.id,
            source_kind=r.source_type,
            source_reference=r.source_reference,
            archive_reference=r.archive_reference,
            bank_reference=r.bank_reference,
            amount=int(r.amount),
            currency=r.currency,
        )
        for r in result
    ]


def ledger_lookup(session: Session):
    """Bind :func:`fetch_ledger_rows` to ``session`` for ``check_duplicates``."""

    def _lookup() -> list[LedgerRow]:
        return fetch_ledger_rows(session)

    return _lookup


def resolve_projects(
    session: Session, candidates: Sequence[ImportCandidate]
) -> list[ImportCandidate]:
    """Fill ``project_id`` from ``project_name`` (case-insensitive) where missing."""

    names = {
        c.project_name.strip().lower()
        for c in candidates
        if c.project_id is None and c.project_name
    }
    if not names:
        return list(candidates)
    rows = session.execute(
        select(Project.id, Project.name).where(func.lower(Project.name).in_(sorted(names)))
    ).all()
    by_name = {str(name).strip().lower(): pid for pid, name in rows}
    out: list[ImportCandidate] = []
    for c in candidates:
        if c.project_id is None and c.project_name:
            pid = by_name.get(c.project_name.strip().lower())
            if pid is None:
                _log.info("projects:unresolved name=%s", c.project_name)
            else:
                c = dataclasses.replace(c, project_id=pid)
        out.append(c)
    return out


# ---------------------------------------------------------------------------
# Row building
# ---------------------------------------------------------------------------


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_json_safe(v) for v in value]
    return str(value)


def candidate_row(candidate: ImportCandidate, *, today: date | None = None) -> dict[str, Any]:
    """Map a candidate to ``transactions`` column values (before suppression)."""

    rec = candidate.record
    return {
        "type": candidate.direction.value,
        "amount": rec.amount,
        "currency": rec.currency,
        "transaction_date": candidate.transaction_date or today or date.today(),
        "source_type": rec.source_kind.value,
        "source_reference": candidate.source_reference,
        "project_id": candidate.project_id,
        "description": candidate.description,
        "counterparty": candidate.counterparty,
        "customer_email": candidate.customer_email,
        "bank_reference": candidate.bank_reference,
        "archive_reference": rec.primary_id.strip() if rec.archive_reference else None,
        "transaction_type": candidate.transaction_type,
        "category": candidate.category,
        "metadata": {"raw": _json_safe(dict(candidate.raw))} if candidate.raw else {},
    }


def suppress_shared_archive_refs(
    candidates: Sequence[ImportCandidate], *, today: date | None = None
) -> list[dict[str, Any]]:
    """Build row values, dropping archive references shared within the batch.

    A bank archive reference seen more than once is written as ``None`` on
    every row carrying it. Those rows keep a distinct ``source_reference``:
    their bank reference when that is unique in the batch, else
    ``"<archive_ref>-<n>"`` numbered by occurrence.
    """

    archive_counts = Counter(
        c.record.archive_reference
        for c in candidates
        if c.record.archive_reference is not None
    )
    bank_ref_counts = Counter(
        normalize_identifier(c.bank_reference) for c in candidates if c.bank_reference
    )
    seen: Counter[str] = Counter()
    rows: list[dict[str, Any]] = []
    for c in candidates:
        row = candidate_row(c, today=today)
        key = c.record.archive_reference
        if key is not None and archive_counts[key] > 1:
            seen[key] += 1
            bank_ref = c.bank_reference
            if bank_ref and bank_ref_counts[normalize_identifier(bank_ref)] == 1:
                row["source_reference"] = bank_ref
            else:
                row["source_reference"] = f"{row['archive_reference']}-{seen[key]}"
            row["archive_reference"] = None
        rows.append(row)
    if seen:
        _log.info(
            "import:archive_refs_suppressed refs=%d rows=%d", len(seen), sum(seen.values())
        )
    return rows


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _lowered(values: Iterable[Any]) -> set[str]:
    return {v for v in (normalize_identifier(x) for x in values) if v}


def filter_existing(
    session: Session, rows: Sequence[Mapping[str, Any]]
) -> tuple[list[Mapping[str, Any]], int]:
    """Drop rows whose reference is already stored; return ``(kept, skipped)``.

    Works on the row values produced by :func:`suppress_shared_archive_refs`
    so rows that lost a shared archive reference are recognized by their
    numbered source reference on re-import. Processor rows compare
    ``source_reference``; bank rows compare their archive and source
    references against stored bank archive and source references. Repeated
    processor references inside the batch keep only their first occurrence.
    """

    stripe_refs = _lowered(
        r["source_reference"] for r in rows if r["source_type"] == SourceKind.STRIPE.value
    )
    bank_refs = _lowered(
        v
        for r in rows
        if r["source_type"] == SourceKind.BANK.value
        for v in (r["archive_reference"], r["source_reference"])
    )

    existing_stripe: set[str] = set()
    existing_bank: set[str] = set()
    if stripe_refs:
        stmt = select(LedgerTransaction.source_reference).where(
            LedgerTransaction.source_type == SourceKind.STRIPE.value,
            func.lower(LedgerTransaction.source_reference).in_(sorted(stripe_refs)),
        )
        existing_stripe = _lowered(session.execute(stmt).scalars())
    if bank_refs:
        refs = sorted(bank_refs)
        stmt = select(
            LedgerTransaction.archive_reference, LedgerTransaction.source_reference
        ).where(
            LedgerTransaction.source_type == SourceKind.BANK.value,
            func.lower(LedgerTransaction.archive_reference).in_(refs)
            | func.lower(LedgerTransaction.source_reference).in_(refs),
        )
        for archive_ref, source_ref in session.execute(stmt).all():
            existing_bank |= _lowered((archive_ref, source_ref))

    kept: list[Mapping[str, Any]] = []
    batch_stripe: set[str] = set()
    skipped = 0
    for r in rows:
        if r["source_type"] == SourceKind.STRIPE.value:
            ref = normalize_identifier(r["source_reference"])
            if ref in existing_stripe or ref in batch_stripe:
                skipped += 1
                continue
            if ref:
                batch_stripe.add(ref)
        elif _lowered((r["archive_reference"], r["source_reference"])) & existing_bank:
            skipped += 1
            continue
        kept.append(r)
    return kept, skipped


def _insert_for(session: Session):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def _insert_rows(
    session: Session, rows: list[Mapping[str, Any]], index_col: str, where: str
) -> int:
    if not rows:
        return 0
    insert = _insert_for(session)
    table = LedgerTransaction.__table__
    stmt = (
        insert(table)
        .values(rows)
        .on_conflict_do_nothing(index_elements=[index_col], index_where=text(where))
        .returning(table.c.id)
    )
    return len(session.execute(stmt).scalars().all())


def insert_transactions(
    session: Session,
    candidates: Sequence[ImportCandidate],
    *,
    today: date | None = None,
) -> ImportOutcome:
    """Persist candidates idempotently and report what happened.

    Steps: build row values with shared archive references suppressed, drop
    rows already in the ledger, then insert with ``ON CONFLICT DO NOTHING``.
    Rows dropped by a conflict count as skipped.
    """

    rows = suppress_shared_archive_refs(candidates, today=today)
    kept, skipped = filter_existing(session, rows)
    stripe_rows = [r for r in kept if r["source_type"] == SourceKind.STRIPE.value]
    bank_rows = [r for r in kept if r["source_type"] != SourceKind.STRIPE.value]

    imported = _insert_rows(session, stripe_rows, "source_reference", _STRIPE_INDEX_WHERE)
    imported += _insert_rows(session, bank_rows, "archive_reference", _BANK_INDEX_WHERE)
    skipped += len(kept) - imported

    _log.info("import:written imported=%d skipped=%d", imported, skipped)
    return ImportOutcome(imported=imported, skipped=skipped)


__all__ = [
    "fetch_ledger_rows",
    "ledger_lookup",
    "resolve_projects",
    "candidate_row",
    "suppress_shared_archive_refs",
    "filter_existing",
    "insert_transactions",
]
