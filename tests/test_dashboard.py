from datetime import date
from decimal import Decimal

from db.client import session_scope

from bookkeeping.dashboard import SummaryRow, build_dashboard, load_dashboard
from tests.helpers.db import seed_projects, seed_transactions


def _rows():
    return [
        SummaryRow(1, "Alpha", "income", "nok", "2025-01", 100000),
        SummaryRow(1, "Alpha", "expense", "nok", "2025-01", 25000),
        SummaryRow(2, "Beta", "income", "usd", "2025-02", 10000),
        SummaryRow(None, None, "expense", "nok", "2025-02", 5000),
    ]


def test_totals_convert_usd_to_nok():
    dash = build_dashboard(_rows(), year=2025, usd_to_nok=Decimal("10.5"))

    assert dash.income_by_currency == {"NOK": Decimal("1000.00"), "USD": Decimal("100.00")}
    assert dash.expenses_by_currency == {"NOK": Decimal("300.00")}
    assert dash.total_income_nok == Decimal("2050.00")
    assert dash.total_expenses_nok == Decimal("300.00")
    assert dash.total_profit_nok == Decimal("1750.00")
    assert dash.profit_by_currency == {"NOK": Decimal("700.00"), "USD": Decimal("100.00")}
    assert dash.exchange_rate == Decimal("10.5")


def test_project_and_month_breakdowns():
    dash = build_dashboard(_rows(), year=2025)

    assert [p.project_name for p in dash.projects] == ["Alpha", "Beta"]
    alpha = dash.projects[0]
    assert [(c.currency, c.income, c.expenses, c.profit) for c in alpha.currencies] == [
        ("NOK", Decimal("1000.00"), Decimal("250.00"), Decimal("750.00"))
    ]

    assert [m.month for m in dash.months] == ["2025-01", "2025-02"]
    feb = {c.currency: c for c in dash.months[1].currencies}
    assert feb["NOK"].expenses == Decimal("50.00")
    assert feb["USD"].income == Decimal("100.00")


def test_empty_year():
    dash = build_dashboard([], year=2024)
    assert dash.total_income_nok == Decimal("0.00")
    assert dash.projects == []
    assert dash.months == []


def test_load_dashboard_from_ledger(db_url: str):
    ids = seed_projects(database_url=db_url, names=["Alpha"])
    seed_transactions(
        database_url=db_url,
        rows=[
            {
                "amount": 399900,
                "currency": "NOK",
                "source_reference": "pi_1",
                "project_id": ids["Alpha"],
                "transaction_date": date(2025, 3, 4),
            },
            {
                "amount": 1000,
                "currency": "usd",
                "source_reference": "pi_2",
                "transaction_date": date(2025, 3, 20),
            },
            {
                "type": "expense",
                "source_type": "bank",
                "amount": 158250,
                "archive_reference": "670001",
                "transaction_date": date(2025, 4, 1),
            },
            {"amount": 5, "source_reference": "pi_old", "transaction_date": date(2024, 12, 31)},
        ],
    )
    with session_scope(database_url=db_url) as s:
        dash = load_dashboard(s, 2025, usd_to_nok=Decimal("10"))

    assert dash.transaction_count == 3
    assert dash.income_by_currency == {"NOK": Decimal("3999.00"), "USD": Decimal("10.00")}
    assert dash.total_income_nok == Decimal("4099.00")
    assert dash.total_expenses_nok == Decimal("1582.50")
    assert [p.project_name for p in dash.projects] == ["Alpha"]
    assert [m.month for m in dash.months] == ["2025-03", "2025-04"]
