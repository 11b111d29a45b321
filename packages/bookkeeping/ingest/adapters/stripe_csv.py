"""Adapter for payment-processor "unified payments" CSV exports.

CSV header (columns read; others are ignored):
``PaymentIntent ID, Created date (UTC), Amount, Currency, Status,
Project Name, Customer Email, Description``

Rows are yielded as raw mappings keyed by the original column names, for the
``processor_csv`` normalizer profile (``Amount`` is major units with a decimal
comma, e.g. ``3999,00``). Rows without a payment id or amount, and rows whose
``Status`` is set to anything other than paid/succeeded, are dropped.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

REQUIRED_COLUMNS: set[str] = {"PaymentIntent ID", "Amount", "Currency"}
OPTIONAL_COLUMNS: tuple[str, ...] = (
    "Created date (UTC)",
    "Status",
    "Project Name",
    "Customer Email",
    "Description",
)
_ACCEPTED_STATUSES = {"paid", "succeeded"}


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value).strip()
    return cleaned or None


def to_raw_rows(rows: Iterable[Mapping[str, str | None]]) -> Iterator[Mapping[str, Any]]:
    """Convert processor CSV rows to raw import mappings."""

    for row in rows:
        payment_id = _clean_text(row.get("PaymentIntent ID"))
        amount = _clean_text(row.get("Amount"))
        if not payment_id or not amount:
            continue
        status = (_clean_text(row.get("Status")) or "").lower()
        if status and status not in _ACCEPTED_STATUSES:
            continue
        out: dict[str, Any] = {
            "PaymentIntent ID": payment_id,
            "Amount": amount,
            "Currency": _clean_text(row.get("Currency")),
        }
        for col in OPTIONAL_COLUMNS:
            out[col] = _clean_text(row.get(col))
        yield out


__all__ = ["REQUIRED_COLUMNS", "to_raw_rows"]
