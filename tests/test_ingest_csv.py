import csv
import textwrap
from datetime import date
from pathlib import Path

import pytest

from bookkeeping.ingest import load_bank_csv, load_stripe_csv, read_text
from bookkeeping.models import Direction
from bookkeeping.normalizers import BANK_CSV, PROCESSOR_CSV, normalize_batch


def _dedent(s: str) -> str:
    # Keep internal newlines, but normalize indentation for readability.
    return textwrap.dedent(s).lstrip("\n").rstrip()


BANK_TEXT = _dedent(
    """
    Bokført dato;Forklarende tekst;Transaksjonstype;Ut;Inn;Arkivref.;Referanse
    02.01.2025;KIWI 505 STORO;Varekjøp;-1.582,50;;670001;420189451
    03.01.2025;Lønn januar;Lønn;;25.000,00;670002;
    04.01.2025;1234567890123456 Spotify AB;Varekjøp;-129,00;;;
    ;;;;;;
    """
)

STRIPE_TEXT = _dedent(
    """
    PaymentIntent ID,Created date (UTC),Amount,Currency,Status,Customer Email,Project Name
    pi_3QaAAA,2025-12-29 18:48:03,3999.00,nok,Paid,Kari@Example.no,Alpha
    pi_3QaBBB,2025-12-30 09:12:00,1250.5,usd,succeeded,,
    pi_3QaCCC,2025-12-30 10:00:00,10.00,usd,Failed,,
    ,2025-12-30 11:00:00,10.00,usd,Paid,,
    """
)


def test_bank_csv_rows_keep_original_columns():
    rows = load_bank_csv(BANK_TEXT)
    assert len(rows) == 3
    assert rows[0]["Arkivref."] == "670001"
    assert rows[0]["Ut"] == "-1.582,50"
    assert rows[0]["Inn"] is None
    assert rows[1]["Referanse"] is None


def test_bank_csv_end_to_end_normalization():
    batch = normalize_batch(load_bank_csv(BANK_TEXT), profile=BANK_CSV)
    assert batch.rejected == []
    kiwi, salary, spotify = batch.accepted

    assert kiwi.record.identifier == "670001"
    assert kiwi.record.amount == 158250
    assert kiwi.direction is Direction.EXPENSE
    assert kiwi.transaction_date == date(2025, 1, 2)

    assert salary.direction is Direction.INCOME
    assert salary.record.amount == 2500000
    assert salary.category == "salary"

    # No archive or bank reference: composite key
    assert spotify.record.composite_key == "bank:2025-01-04:12900:spotify ab"


def test_bank_csv_with_bom_and_file_roundtrip(tmp_path: Path):
    p = tmp_path / "statement.csv"
    p.write_text(BANK_TEXT, encoding="utf-8-sig")
    text = read_text(p)
    assert not text.startswith("\ufeff")
    assert len(load_bank_csv(text)) == 3
    assert len(load_bank_csv("\ufeff" + BANK_TEXT)) == 3


def test_bank_csv_header_mismatch():
    with pytest.raises(csv.Error, match="Missing columns: Bokført dato"):
        load_bank_csv("Dato;Forklarende tekst;Ut\n02.01.2025;x;-1,00\n")
    with pytest.raises(csv.Error, match="Ut, Inn"):
        load_bank_csv("Bokført dato;Forklarende tekst;Beløp\n02.01.2025;x;-1,00\n")


def test_stripe_csv_filters_unpaid_and_idless_rows():
    rows = load_stripe_csv(STRIPE_TEXT)
    assert [r["PaymentIntent ID"] for r in rows] == ["pi_3QaAAA", "pi_3QaBBB"]
    assert rows[0]["Customer Email"] == "Kari@Example.no"
    assert rows[1]["Customer Email"] is None


def test_stripe_csv_end_to_end_normalization():
    batch = normalize_batch(load_stripe_csv(STRIPE_TEXT), profile=PROCESSOR_CSV)
    first, second = batch.accepted
    assert first.record.amount == 399900
    assert first.record.currency == "nok"
    assert first.customer_email == "kari@example.no"
    assert first.project_name == "Alpha"
    assert first.transaction_date == date(2025, 12, 29)
    assert second.record.amount == 125050
    assert second.record.currency == "usd"


def test_stripe_csv_header_mismatch():
    with pytest.raises(csv.Error, match="Missing columns: Currency"):
        load_stripe_csv("PaymentIntent ID,Amount\npi_1,10.00\n")
