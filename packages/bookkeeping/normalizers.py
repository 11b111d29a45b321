"""Raw import payloads → :class:`TransactionRecord` / :class:`ImportCandidate`.

Inputs arrive in several shapes (processor webhook objects, processor CSV
exports, bank statement CSV rows, screenshot extractions, already-normalized
ledger payloads). Each shape is described by a :class:`SourceProfile`: an
explicit, ordered list of ``(field name, extractor)`` pairs per value, tried in
priority order until one yields something. Amount rules additionally declare
the unit their field is written in, so unit conversion is decided by the
profile and never guessed downstream.

Identifier derivation
---------------------
- processor: payment identifier only.
- bank: archive reference → bank reference → ``date + amount + counterparty``
  composite key as a last resort.

All functions here are pure; no I/O.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from .amounts import AmountUnit, is_negative, to_minor_units
from .errors import NormalizationError
from .models import (
    Direction,
    ImportCandidate,
    NormalizedBatch,
    RejectedItem,
    SourceKind,
    TransactionRecord,
)

Extractor = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping | list | tuple):
        return None
    s = str(value).strip()
    return s or None


def _lower_text(value: Any) -> str | None:
    s = _text(value)
    return s.lower() if s else None


def _project_id(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise NormalizationError(f"invalid project_id: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise NormalizationError(f"invalid project_id: {value!r}") from exc


_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d.%m.%y", "%m/%d/%Y")


def parse_date(value: Any) -> date | None:
    """Parse the date shapes seen across sources; ``None`` when blank.

    Accepts ``date``/``datetime`` objects, epoch seconds, ``YYYY-MM-DD``,
    ``DD.MM.YYYY`` (bank statements), ``MM/DD/YYYY`` and ISO datetimes such
    as ``2025-12-29 18:48:03`` or ``2025-12-29T18:48:03Z``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, tz=UTC).date()
        except (OverflowError, OSError, ValueError) as exc:
            raise NormalizationError(f"invalid date: {value!r}") from exc
    s = str(value).strip()
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass
    # "2025-12-29 18:48:03 UTC" and similar: keep the leading date token
    head = s.split()[0].split("T", 1)[0]
    try:
        return datetime.strptime(head, "%Y-%m-%d").date()
    except ValueError as exc:
        raise NormalizationError(f"invalid date: {value!r}") from exc


# ---------------------------------------------------------------------------
# Rules and profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldRule:
    """One ``(field name, extractor)`` pair.

    An exact key wins (``"Arkivref."`` is a literal column name); otherwise a
    dotted name traverses nested mappings.
    """

    field: str
    extract: Extractor = _text

    def apply(self, raw: Mapping[str, Any]) -> Any:
        if self.field in raw:
            return self.extract(raw[self.field])
        value: Any = raw
        for part in self.field.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return None
            value = value[part]
        return self.extract(value)


@dataclass(frozen=True, slots=True)
class AmountRule:
    """Amount field with its declared unit and optional implied direction."""

    field: str
    unit: AmountUnit
    decimal_comma: bool = False
    direction: Direction | None = None

    def present(self, raw: Mapping[str, Any]) -> bool:
        v = raw.get(self.field)
        if v is None or isinstance(v, bool):
            return False
        return not (isinstance(v, str) and not v.strip())


def first_value(raw: Mapping[str, Any], rules: Sequence[FieldRule]) -> Any:
    """Return the first non-empty extraction, trying ``rules`` in order."""

    for rule in rules:
        value = rule.apply(raw)
        if value is not None:
            return value
    return None


def _rules(*fields: str, extract: Extractor = _text) -> tuple[FieldRule, ...]:
    return tuple(FieldRule(f, extract) for f in fields)


PAYMENT_ID_RULES = _rules(
    "stripe_payment_id",
    "payment_intent_id",
    "PaymentIntent ID",
    "payment_intent.id",
    "primary_id",
    "source_reference",
    "id",
)
ARCHIVE_REF_RULES = _rules("archive_reference", "Arkivref.", "Arkivref", "archiveRef", "primary_id")
BANK_REF_RULES = _rules("bank_reference", "Referanse", "bankReference", "secondary_id")
COMPOSITE_KEY_RULES = _rules("composite_key")
CURRENCY_RULES = _rules("currency", "Currency", "amount_currency", extract=_lower_text)
DATE_RULES = _rules(
    "transaction_date",
    "date",
    "Bokført dato",
    "Created date (UTC)",
    "created",
    extract=parse_date,
)
DESCRIPTION_RULES = _rules("description", "Description", "Forklarende tekst")
COUNTERPARTY_RULES = _rules("counterparty")
EMAIL_RULES = _rules(
    "customer_email", "Customer Email", "receipt_email", "email", extract=_lower_text
)
TRANSACTION_TYPE_RULES = _rules("transaction_type", "Transaksjonstype")
CATEGORY_RULES = _rules("category")
DIRECTION_RULES = _rules("type", extract=_lower_text)
PROJECT_ID_RULES = _rules("project_id", extract=_project_id)
PROJECT_NAME_RULES = _rules("project_name", "Project Name")


@dataclass(frozen=True, slots=True)
class SourceProfile:
    """Field layout of one input shape."""

    name: str
    source_kind: SourceKind
    amount_rules: tuple[AmountRule, ...]
    default_currency: str | None = None
    require_date: bool = False


PROCESSOR_EVENT = SourceProfile(
    name="processor_event",
    source_kind=SourceKind.STRIPE,
    amount_rules=(
        AmountRule("amount", AmountUnit.AUTO),
        AmountRule("amount_total", AmountUnit.MINOR),
        AmountRule("amount_received", AmountUnit.MINOR),
    ),
    default_currency="usd",
)
PROCESSOR_CSV = SourceProfile(
    name="processor_csv",
    source_kind=SourceKind.STRIPE,
    amount_rules=(AmountRule("Amount", AmountUnit.MAJOR, decimal_comma=True),),
)
PROCESSOR_EXTRACTED = SourceProfile(
    name="processor_extracted",
    source_kind=SourceKind.STRIPE,
    amount_rules=(AmountRule("amount", AmountUnit.MAJOR),),
)
PROCESSOR_LEDGER = SourceProfile(
    name="processor_ledger",
    source_kind=SourceKind.STRIPE,
    amount_rules=(AmountRule("amount", AmountUnit.AUTO),),
)
BANK_CSV = SourceProfile(
    name="bank_csv",
    source_kind=SourceKind.BANK,
    amount_rules=(
        AmountRule("Ut", AmountUnit.MAJOR, decimal_comma=True, direction=Direction.EXPENSE),
        AmountRule("Inn", AmountUnit.MAJOR, decimal_comma=True, direction=Direction.INCOME),
    ),
    default_currency="nok",
    require_date=True,
)
BANK_LEDGER = SourceProfile(
    name="bank_ledger",
    source_kind=SourceKind.BANK,
    amount_rules=(AmountRule("amount", AmountUnit.AUTO),),
)

PROFILES: dict[str, SourceProfile] = {
    p.name: p
    for p in (
        PROCESSOR_EVENT,
        PROCESSOR_CSV,
        PROCESSOR_EXTRACTED,
        PROCESSOR_LEDGER,
        BANK_CSV,
        BANK_LEDGER,
    )
}

_BANK_CSV_KEYS = {"Ut", "Inn", "Arkivref.", "Bokført dato", "Forklarende tekst"}
_BANK_LEDGER_KEYS = {"archive_reference", "bank_reference", "archiveRef", "bankReference"}


def get_profile(name: str) -> SourceProfile:
    try:
        return PROFILES[name.strip().lower().replace("-", "_")]
    except KeyError:
        raise ValueError(
            f"unknown source profile: {name!r}. Allowed: {sorted(PROFILES)}"
        ) from None


def infer_profile(raw: Mapping[str, Any]) -> SourceProfile:
    """Pick a profile from the keys present in ``raw``.

    Ambiguous ``amount`` payloads resolve to the ledger profiles, which read
    integers as minor units and decimal strings as major units; callers
    holding webhook or extraction payloads pass the profile explicitly.
    """

    keys = set(raw.keys())
    if keys & _BANK_CSV_KEYS:
        return BANK_CSV
    if "PaymentIntent ID" in keys:
        return PROCESSOR_CSV
    declared = _lower_text(raw.get("source_type") or raw.get("source_kind"))
    if declared == SourceKind.BANK.value or (declared is None and keys & _BANK_LEDGER_KEYS):
        return BANK_LEDGER
    return PROCESSOR_LEDGER


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------

_CARD_NUMBER_RE = re.compile(r"^\d{15,}")
_SALARY_RE = re.compile(r"\b(salary|lønn)\b", re.IGNORECASE)


def extract_counterparty(description: str | None) -> str | None:
    """Best-effort counterparty from a bank description.

    Takes the first ``;``/``:`` separated segment; when that segment starts
    with a card-number-like run of digits, falls back to the next segment or
    the last two words of the description.
    """

    if not description:
        return None
    parts = re.split(r"[;:]", description)
    first = parts[0].strip()
    if first and not _CARD_NUMBER_RE.match(first):
        return first
    if len(parts) > 1 and parts[1].strip():
        return parts[1].strip()
    tail = " ".join(description.split()[-2:]).strip()
    return tail or None


def composite_key(tx_date: date | None, amount: int, counterparty: str | None) -> str | None:
    if tx_date is None:
        return None
    cp = " ".join((counterparty or "").lower().split())
    return f"bank:{tx_date.isoformat()}:{amount}:{cp}"


def _select_amount(
    raw: Mapping[str, Any], profile: SourceProfile
) -> tuple[int, Direction | None, bool]:
    for rule in profile.amount_rules:
        if rule.present(raw):
            value = raw[rule.field]
            minor = to_minor_units(value, rule.unit, decimal_comma=rule.decimal_comma)
            return minor, rule.direction, is_negative(value)
    fields = ", ".join(r.field for r in profile.amount_rules)
    raise NormalizationError(f"missing amount (looked for: {fields})", raw=raw)


def _resolve_direction(
    raw: Mapping[str, Any],
    profile: SourceProfile,
    implied: Direction | None,
    negative: bool,
) -> Direction:
    explicit = first_value(raw, DIRECTION_RULES)
    if explicit in (Direction.INCOME.value, Direction.EXPENSE.value):
        return Direction(explicit)
    if implied is not None:
        return implied
    if profile.source_kind is SourceKind.BANK and negative:
        return Direction.EXPENSE
    return Direction.INCOME


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_candidate(
    raw: Mapping[str, Any] | ImportCandidate | TransactionRecord,
    *,
    profile: SourceProfile | str | None = None,
    default_currency: str | None = None,
) -> ImportCandidate:
    """Normalize one raw payload into an :class:`ImportCandidate`.

    Already-normalized inputs pass through untouched so that re-normalizing
    never converts an amount twice.
    """

    if isinstance(raw, ImportCandidate):
        return raw
    if isinstance(raw, TransactionRecord):
        return ImportCandidate(record=raw, direction=Direction.INCOME)
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"expected a mapping, got {type(raw).__name__}")

    if isinstance(profile, str):
        profile = get_profile(profile)
    prof = profile or infer_profile(raw)

    amount, implied_direction, negative = _select_amount(raw, prof)

    currency = first_value(raw, CURRENCY_RULES) or default_currency or prof.default_currency
    if not currency:
        raise NormalizationError("missing currency", raw=raw)

    tx_date = first_value(raw, DATE_RULES)
    if tx_date is None and prof.require_date:
        raise NormalizationError("missing transaction date", raw=raw)

    description = first_value(raw, DESCRIPTION_RULES)
    counterparty = first_value(raw, COUNTERPARTY_RULES)
    category = first_value(raw, CATEGORY_RULES)

    if prof.source_kind is SourceKind.BANK:
        if counterparty is None:
            counterparty = extract_counterparty(description)
        primary = first_value(raw, ARCHIVE_REF_RULES)
        secondary = first_value(raw, BANK_REF_RULES)
        composite = None
        if primary is None and secondary is None:
            composite = first_value(raw, COMPOSITE_KEY_RULES) or composite_key(
                tx_date, amount, counterparty
            )
        if category is None and _SALARY_RE.search(f"{description or ''} {counterparty or ''}"):
            category = "salary"
    else:
        primary = first_value(raw, PAYMENT_ID_RULES)
        secondary = None
        composite = None

    if primary is None and secondary is None and composite is None:
        raise NormalizationError("no identifier derivable", raw=raw)

    try:
        record = TransactionRecord(
            source_kind=prof.source_kind,
            primary_id=primary,
            secondary_id=secondary,
            amount=amount,
            currency=currency,
            composite_key=composite,
        )
    except ValueError as exc:
        raise NormalizationError(str(exc), raw=raw) from exc

    return ImportCandidate(
        record=record,
        direction=_resolve_direction(raw, prof, implied_direction, negative),
        transaction_date=tx_date,
        description=description,
        counterparty=counterparty,
        customer_email=first_value(raw, EMAIL_RULES),
        transaction_type=first_value(raw, TRANSACTION_TYPE_RULES),
        category=category,
        project_id=first_value(raw, PROJECT_ID_RULES),
        project_name=first_value(raw, PROJECT_NAME_RULES),
        raw=dict(raw),
    )


def normalize_record(
    raw: Mapping[str, Any] | ImportCandidate | TransactionRecord,
    *,
    profile: SourceProfile | str | None = None,
    default_currency: str | None = None,
) -> TransactionRecord:
    """Normalize one raw payload into the canonical matching tuple."""

    if isinstance(raw, TransactionRecord):
        return raw
    return normalize_candidate(raw, profile=profile, default_currency=default_currency).record


def normalize_batch(
    raws: Iterable[Mapping[str, Any] | ImportCandidate | TransactionRecord],
    *,
    profile: SourceProfile | str | None = None,
    default_currency: str | None = None,
) -> NormalizedBatch:
    """Normalize a batch, collecting per-item failures instead of raising."""

    if isinstance(profile, str):
        profile = get_profile(profile)
    accepted: list[ImportCandidate] = []
    rejected: list[RejectedItem] = []
    for pos, raw in enumerate(raws):
        try:
            accepted.append(
                normalize_candidate(raw, profile=profile, default_currency=default_currency)
            )
        except NormalizationError as e:
            rejected.append(
                RejectedItem(
                    position=pos,
                    reason=e.reason,
                    raw=dict(raw) if isinstance(raw, Mapping) else {},
                )
            )
    return NormalizedBatch(accepted=accepted, rejected=rejected)


__all__ = [
    "FieldRule",
    "AmountRule",
    "SourceProfile",
    "PROFILES",
    "PROCESSOR_EVENT",
    "PROCESSOR_CSV",
    "PROCESSOR_EXTRACTED",
    "PROCESSOR_LEDGER",
    "BANK_CSV",
    "BANK_LEDGER",
    "first_value",
    "get_profile",
    "infer_profile",
    "parse_date",
    "extract_counterparty",
    "composite_key",
    "normalize_candidate",
    "normalize_record",
    "normalize_batch",
]
