"""Adapter for Norwegian bank statement CSV exports.

CSV header (columns read; others are ignored):
``Bokført dato, Forklarende tekst, Transaksjonstype, Ut, Inn, Arkivref.,
Referanse``

``Ut`` holds outgoing amounts (often with a leading minus) and ``Inn``
incoming ones, both in major units with a decimal comma (``-1.582,50``).
Rows are yielded keyed by the original column names for the ``bank_csv``
normalizer profile. Fully blank rows (statement footers) are skipped; any
other row is passed through so the normalizer can report it as rejected.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

REQUIRED_COLUMNS: set[str] = {"Bokført dato", "Forklarende tekst"}
AMOUNT_COLUMNS: tuple[str, ...] = ("Ut", "Inn")
COLUMNS: tuple[str, ...] = (
    "Bokført dato",
    "Forklarende tekst",
    "Transaksjonstype",
    "Ut",
    "Inn",
    "Arkivref.",
    "Referanse",
)


def to_raw_rows(rows: Iterable[Mapping[str, str | None]]) -> Iterator[Mapping[str, Any]]:
    """Convert bank statement CSV rows to raw import mappings."""

    for row in rows:
        out: dict[str, Any] = {}
        for col in COLUMNS:
            v = row.get(col)
            v = v.strip() if isinstance(v, str) else None
            out[col] = v or None
        if not any(out.values()):
            continue
        yield out


__all__ = ["REQUIRED_COLUMNS", "AMOUNT_COLUMNS", "to_raw_rows"]
