"""Yearly income/expense dashboard over the ledger.

:func:`load_summary_rows` groups ledger rows by project, direction, currency
and month (in Python, so it runs on any SQL dialect); :func:`build_dashboard`
turns those groups into per-currency totals, combined NOK totals and the
project and monthly breakdowns. Amounts are summed in minor units and reported
in major units as 2-dp ``Decimal`` values.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.ledger import LedgerTransaction, Project

from .amounts import minor_to_major
from .config import DEFAULT_USD_TO_NOK
from .models import Direction

_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class SummaryRow:
    project_id: int | None
    project_name: str | None
    type: str
    currency: str
    month: str  # YYYY-MM
    total_amount: int  # minor units


@dataclass(frozen=True, slots=True)
class CurrencyTotals:
    currency: str
    income: Decimal
    expenses: Decimal

    @property
    def profit(self) -> Decimal:
        return self.income - self.expenses


@dataclass(frozen=True, slots=True)
class ProjectBreakdown:
    project_id: int
    project_name: str
    currencies: list[CurrencyTotals]

    @property
    def total_income(self) -> Decimal:
        return sum((c.income for c in self.currencies), Decimal(0))


@dataclass(frozen=True, slots=True)
class MonthBreakdown:
    month: str
    currencies: list[CurrencyTotals]


@dataclass(frozen=True, slots=True)
class Dashboard:
    year: int
    total_income_nok: Decimal
    total_expenses_nok: Decimal
    income_by_currency: dict[str, Decimal]
    expenses_by_currency: dict[str, Decimal]
    exchange_rate: Decimal
    projects: list[ProjectBreakdown] = field(default_factory=list)
    months: list[MonthBreakdown] = field(default_factory=list)
    transaction_count: int = 0

    @property
    def total_profit_nok(self) -> Decimal:
        return self.total_income_nok - self.total_expenses_nok

    @property
    def profit_by_currency(self) -> dict[str, Decimal]:
        keys = sorted(set(self.income_by_currency) | set(self.expenses_by_currency))
        return {
            k: self.income_by_currency.get(k, Decimal("0.00"))
            - self.expenses_by_currency.get(k, Decimal("0.00"))
            for k in keys
        }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year + 1, 1, 1)


def load_summary_rows(session: Session, year: int) -> list[SummaryRow]:
    start, end = _year_bounds(year)
    stmt = (
        select(
            LedgerTransaction.project_id,
            Project.name,
            LedgerTransaction.type,
            LedgerTransaction.currency,
            LedgerTransaction.transaction_date,
            LedgerTransaction.amount,
        )
        .outerjoin(Project, Project.id == LedgerTransaction.project_id)
        .where(
            LedgerTransaction.transaction_date >= start,
            LedgerTransaction.transaction_date < end,
        )
    )
    totals: dict[tuple[int | None, str | None, str, str, str], int] = defaultdict(int)
    for project_id, project_name, type_, currency, tx_date, amount in session.execute(stmt):
        key = (project_id, project_name, type_, currency.lower(), tx_date.strftime("%Y-%m"))
        totals[key] += int(amount)
    return [
        SummaryRow(pid, pname, type_, cur, month, total)
        for (pid, pname, type_, cur, month), total in sorted(
            totals.items(), key=lambda kv: (kv[0][4], kv[0][3], kv[0][2], kv[0][0] or 0)
        )
    ]


def count_transactions(session: Session, year: int) -> int:
    start, end = _year_bounds(year)
    stmt = select(func.count(LedgerTransaction.id)).where(
        LedgerTransaction.transaction_date >= start,
        LedgerTransaction.transaction_date < end,
    )
    return int(session.execute(stmt).scalar_one())


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _to_nok(amount: Decimal, currency: str, usd_to_nok: Decimal) -> Decimal:
    # Only USD is converted; other currencies are counted as-is.
    return amount * usd_to_nok if currency == "USD" else amount


def _totals(by_currency: dict[str, list[int]]) -> list[CurrencyTotals]:
    return [
        CurrencyTotals(cur, minor_to_major(inc), minor_to_major(exp))
        for cur, (inc, exp) in sorted(by_currency.items())
    ]


def build_dashboard(
    rows: Iterable[SummaryRow],
    *,
    year: int,
    usd_to_nok: Decimal = DEFAULT_USD_TO_NOK,
    transaction_count: int = 0,
) -> Dashboard:
    """Aggregate summary rows into a :class:`Dashboard`.

    Projects are ordered by income summed across currencies (descending);
    months ascending. Rows without a project only count toward totals.
    """

    income_minor: dict[str, int] = defaultdict(int)
    expense_minor: dict[str, int] = defaultdict(int)
    # [income, expenses] in minor units
    by_project: dict[int, dict[str, list[int]]] = defaultdict(lambda: defaultdict(lambda: [0, 0]))
    project_names: dict[int, str] = {}
    by_month: dict[str, dict[str, list[int]]] = defaultdict(lambda: defaultdict(lambda: [0, 0]))

    for r in rows:
        cur = r.currency.upper()
        slot = 0 if r.type == Direction.INCOME.value else 1
        (income_minor if slot == 0 else expense_minor)[cur] += r.total_amount
        by_month[r.month][cur][slot] += r.total_amount
        if r.project_id is not None:
            by_project[r.project_id][cur][slot] += r.total_amount
            project_names.setdefault(r.project_id, r.project_name or "No Project")

    income = {c: minor_to_major(v) for c, v in sorted(income_minor.items())}
    expenses = {c: minor_to_major(v) for c, v in sorted(expense_minor.items())}
    total_income_nok = sum(
        (_to_nok(v, c, usd_to_nok) for c, v in income.items()), Decimal(0)
    ).quantize(_CENT, rounding=ROUND_HALF_UP)
    total_expenses_nok = sum(
        (_to_nok(v, c, usd_to_nok) for c, v in expenses.items()), Decimal(0)
    ).quantize(_CENT, rounding=ROUND_HALF_UP)

    projects = [
        ProjectBreakdown(pid, project_names[pid], _totals(currencies))
        for pid, currencies in by_project.items()
    ]
    projects.sort(key=lambda p: (-p.total_income, p.project_id))
    months = [MonthBreakdown(m, _totals(by_month[m])) for m in sorted(by_month)]

    return Dashboard(
        year=year,
        total_income_nok=total_income_nok,
        total_expenses_nok=total_expenses_nok,
        income_by_currency=income,
        expenses_by_currency=expenses,
        exchange_rate=usd_to_nok,
        projects=projects,
        months=months,
        transaction_count=transaction_count,
    )


def load_dashboard(
    session: Session, year: int, *, usd_to_nok: Decimal = DEFAULT_USD_TO_NOK
) -> Dashboard:
    return build_dashboard(
        load_summary_rows(session, year),
        year=year,
        usd_to_nok=usd_to_nok,
        transaction_count=count_transactions(session, year),
    )


__all__ = [
    "SummaryRow",
    "CurrencyTotals",
    "ProjectBreakdown",
    "MonthBreakdown",
    "Dashboard",
    "load_summary_rows",
    "count_transactions",
    "build_dashboard",
    "load_dashboard",
]
