"""Load raw import rows from CSV exports.

The delimiter is sniffed among ``,`` ``;`` and tab (bank exports are usually
semicolon separated); a leading BOM is dropped. Header problems raise
``csv.Error`` with the missing columns named, which the CLI reports as a parse
failure.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Mapping
from os import PathLike
from pathlib import Path
from typing import Any

from .adapters import bank_csv, stripe_csv

_DELIMITERS = ",;\t"


def _dict_reader(text: str) -> csv.DictReader:
    text = text.lstrip("\ufeff")
    head = text[:8192]
    try:
        dialect = csv.Sniffer().sniff(head, delimiters=_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","
    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    if not reader.fieldnames:
        raise csv.Error("CSV appears to have no header row")
    reader.fieldnames = [h.strip() for h in reader.fieldnames]
    return reader


def _require(reader: csv.DictReader, required: set[str], label: str) -> None:
    headers = set(reader.fieldnames or [])
    missing = sorted(col for col in required if col not in headers)
    if missing:
        raise csv.Error(f"{label}: CSV header mismatch. Missing columns: " + ", ".join(missing))


def load_stripe_csv(text: str) -> list[Mapping[str, Any]]:
    """Parse a processor payments export into raw rows."""

    reader = _dict_reader(text)
    _require(reader, stripe_csv.REQUIRED_COLUMNS, "processor CSV")
    return list(stripe_csv.to_raw_rows(reader))


def load_bank_csv(text: str) -> list[Mapping[str, Any]]:
    """Parse a bank statement export into raw rows."""

    reader = _dict_reader(text)
    _require(reader, bank_csv.REQUIRED_COLUMNS, "bank CSV")
    if not set(bank_csv.AMOUNT_COLUMNS) & set(reader.fieldnames or []):
        raise csv.Error("bank CSV: needs at least one of the columns Ut, Inn")
    return list(bank_csv.to_raw_rows(reader))


def read_text(path: str | PathLike[str]) -> str:
    """Read a CSV export as text (UTF-8, BOM tolerated)."""

    return Path(path).read_text(encoding="utf-8-sig")


__all__ = ["load_stripe_csv", "load_bank_csv", "read_text"]
