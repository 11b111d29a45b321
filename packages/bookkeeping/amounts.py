"""Amount parsing and unit normalization (major ↔ minor units).

This is the only module that converts between major units (``3999.00``) and
minor units (``399900``). Every extraction rule in
:mod:`bookkeeping.normalizers` declares which unit its source field uses, so
the conversion happens exactly once per value and nothing downstream
re-multiplies an already-canonical amount.

Unit semantics
--------------
- ``MINOR``: the value already is an integer count of cents/øre. Floats and
  strings with a separator are rejected rather than read as minor units.
- ``MAJOR``: the value is a decimal amount; multiply by 100 and round half-up.
- ``AUTO``: integers are minor units; strings are major units when they carry
  a decimal point and minor units otherwise. Floats with a fractional part are
  major units; whole floats (``3999.0``) are rejected as ambiguous.

Results are always non-negative; the sign/direction of a transaction is
carried by its type (income/expense), never by the amount.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import NormalizationError


class AmountUnit(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    AUTO = "auto"


_HUNDRED = Decimal(100)
# Everything that is not a digit, separator, or sign marker (currency symbols,
# ISO codes, regular/non-breaking/thin spaces).
_NOISE_RE = re.compile(r"[^0-9,.\-+()]")


def _clean(raw: str) -> tuple[str, bool]:
    """Strip noise and sign markers; return ``(digits_and_separators, negative)``."""

    s = _NOISE_RE.sub("", raw)
    negative = False
    if s.startswith("(") and s.endswith(")") and len(s) >= 2:
        negative = True
        s = s[1:-1]
    if s.startswith("-"):
        negative = True
        s = s[1:]
    elif s.startswith("+"):
        s = s[1:]
    if s.endswith("-"):
        # Trailing minus as printed by some bank exports ("1 582,50-")
        negative = True
        s = s[:-1]
    return s, negative


def parse_decimal(raw: str, *, decimal_comma: bool = False) -> Decimal:
    """Parse a human-formatted amount string into an absolute ``Decimal``.

    With ``decimal_comma`` the comma is the decimal separator and dots are
    thousands separators (``"1.582,50"`` → ``1582.50``); a string without a
    comma is read as-is. Without it, commas are thousands separators. When
    both separators appear the rightmost one is the decimal separator.
    """

    s, _negative = _clean(raw)
    if "," in s and "." in s:
        # Both present: the rightmost one is the decimal separator.
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif decimal_comma:
        s = s.replace(",", ".")
    else:
        s = s.replace(",", "")
    if not s or s.count(".") > 1:
        raise NormalizationError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise NormalizationError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise NormalizationError(f"invalid amount: {raw!r}")
    return abs(d)


def has_fractional_separator(raw: str) -> bool:
    return "." in raw or "," in raw


def _major_to_minor(d: Decimal) -> int:
    return int((abs(d) * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _integral(d: Decimal, raw: Any) -> int:
    if d != d.to_integral_value():
        raise NormalizationError(f"minor-unit amount has a fractional part: {raw!r}")
    return int(abs(d))


def to_minor_units(raw: Any, unit: AmountUnit, *, decimal_comma: bool = False) -> int:
    """Normalize ``raw`` to a non-negative integer amount in minor units.

    Raises :class:`~bookkeeping.errors.NormalizationError` for missing or
    non-numeric input, and for ``MINOR`` values with a fractional part.
    """

    if raw is None or isinstance(raw, bool):
        raise NormalizationError(f"amount is required, got {raw!r}")

    if isinstance(raw, int):
        return abs(raw) * 100 if unit is AmountUnit.MAJOR else abs(raw)

    if isinstance(raw, float) and unit is AmountUnit.MINOR:
        raise NormalizationError(f"ambiguous float amount, expected integer minor units: {raw!r}")

    if isinstance(raw, float | Decimal):
        try:
            d = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation as exc:
            raise NormalizationError(f"invalid amount: {raw!r}") from exc
        if not d.is_finite():
            raise NormalizationError(f"invalid amount: {raw!r}")
        if unit is AmountUnit.MAJOR:
            return _major_to_minor(d)
        if unit is AmountUnit.AUTO and d != d.to_integral_value():
            return _major_to_minor(d)
        if unit is AmountUnit.AUTO and isinstance(raw, float):
            raise NormalizationError(f"ambiguous float amount: {raw!r}")
        return _integral(d, raw)

    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            raise NormalizationError("amount is empty")
        if unit is AmountUnit.MAJOR:
            return _major_to_minor(parse_decimal(s, decimal_comma=decimal_comma))
        if unit is AmountUnit.AUTO:
            # Only a decimal point marks major units; commas are thousands.
            d = parse_decimal(s, decimal_comma=False)
            return _major_to_minor(d) if "." in s else _integral(d, raw)
        if has_fractional_separator(s):
            raise NormalizationError(f"minor-unit amount has a fractional part: {raw!r}")
        return _integral(parse_decimal(s), raw)

    raise NormalizationError(f"unsupported amount type: {type(raw).__name__}")


def is_negative(raw: Any) -> bool:
    """Return True when ``raw`` is written as a negative amount."""

    if isinstance(raw, bool) or raw is None:
        return False
    if isinstance(raw, int | float | Decimal):
        return raw < 0
    if isinstance(raw, str):
        return _clean(raw.strip())[1]
    return False


def minor_to_major(amount: int) -> Decimal:
    """Convert minor units to a 2-dp major-unit ``Decimal`` for display."""

    return (Decimal(amount) / _HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


__all__ = [
    "AmountUnit",
    "parse_decimal",
    "has_fractional_separator",
    "to_minor_units",
    "is_negative",
    "minor_to_major",
]
