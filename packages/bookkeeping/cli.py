"""CLI for the ``bookkeeping`` package.

Each command has a plain handler (``cmd_*``) returning an exit code and a thin
Typer wrapper. Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``,
``ALLOWED_EMAILS``, ...) are loaded from a local ``.env`` with
``python-dotenv`` before any command runs. Business logic lives in
``bookkeeping.api`` and the modules it calls.
"""

from __future__ import annotations

import csv
import json
import sys
from collections.abc import Mapping
from datetime import date
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings
from .logging_setup import configure_logging

# ---- Small module-level helpers used by CLI commands -------------------------


def _err(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)


def _load_raw_items(path: Path, *, kind: str | None = None) -> list[Mapping[str, Any]]:
    """Read raw import items from a JSON array or a CSV export.

    ``kind`` picks the CSV adapter (``stripe`` or ``bank``); without it the
    header decides.
    """

    from .ingest import load_bank_csv, load_stripe_csv, read_text

    text = read_text(path)
    if path.suffix.lower() == ".json":
        data = json.loads(text)
        if isinstance(data, Mapping):
            data = data.get("transactions")
        if not isinstance(data, list):
            raise ValueError("JSON input must be an array or an object with 'transactions'")
        return [item for item in data if isinstance(item, Mapping)]
    if kind is None:
        kind = "bank" if "Arkivref" in text[:4096] or "Bokført" in text[:4096] else "stripe"
    return load_bank_csv(text) if kind == "bank" else load_stripe_csv(text)


def _format_amount(minor: int, currency: str) -> str:
    from .amounts import minor_to_major

    return f"{minor_to_major(minor)} {currency.upper()}"


# ---- Command handlers --------------------------------------------------------


def cmd_check_duplicates(
    input_path: str,
    *,
    profile: str | None = None,
    database_url: str | None = None,
    lenient: bool | None = None,
) -> int:
    """Preview an import: print each item as NEW, DUPLICATE or REJECTED."""

    from db.client import session_scope

    from .api import preview_import
    from .errors import LookupUnavailable

    settings = Settings.from_env()
    strict = settings.strict_duplicate_check if lenient is None else not lenient
    try:
        raws = _load_raw_items(Path(input_path))
    except FileNotFoundError:
        _err(f"File not found: {input_path}")
        return 1
    except (csv.Error, ValueError) as e:
        _err(f"Failed to parse input: {e}")
        return 1

    try:
        with session_scope(database_url=database_url or settings.database_url) as session:
            preview = preview_import(raws, session=session, profile=profile, strict=strict)
    except LookupUnavailable as e:
        _err(f"duplicate check unavailable: {e}")
        return 1
    except (RuntimeError, ValueError) as e:
        _err(str(e))
        return 1

    tiers = {d.candidate_id: d for d in preview.details}
    for c in preview.new:
        rec = c.record
        print(f"NEW\t{rec.identifier}\t{_format_amount(rec.amount, rec.currency)}")
    for c in preview.duplicates:
        rec = c.record
        d = tiers[rec.identifier]
        print(
            f"DUPLICATE\t{rec.identifier}\t{_format_amount(rec.amount, rec.currency)}"
            f"\ttier={int(d.tier)}\tledger={d.matched_ledger_id}"
        )
    for r in preview.rejected:
        print(f"REJECTED\trow {r.position + 1}\t{r.reason}")
    if preview.lookup_failed:
        print(
            "Warning: ledger lookup failed; duplicates could not be checked.",
            file=sys.stderr,
        )
    if preview.needs_review:
        print(
            f"Warning: {len(preview.needs_review)} duplicate(s) matched by amount and "
            "currency only; review before discarding.",
            file=sys.stderr,
        )
    return 0


def cmd_import_csv(
    csv_path: str,
    *,
    kind: str,
    database_url: str | None = None,
    skip_duplicates: bool = False,
) -> int:
    """Import a processor or bank CSV export into the ledger."""

    from db.client import session_scope

    from .api import import_transactions
    from .normalizers import BANK_CSV, PROCESSOR_CSV

    settings = Settings.from_env()
    try:
        raws = _load_raw_items(Path(csv_path), kind=kind)
    except FileNotFoundError:
        _err(f"File not found: {csv_path}")
        return 1
    except PermissionError:
        _err(f"Permission denied: {csv_path}")
        return 1
    except csv.Error as e:
        _err(f"Failed to parse CSV: {e}")
        return 1
    if not raws:
        _err("No transactions found in CSV")
        return 1

    profile = BANK_CSV if kind == "bank" else PROCESSOR_CSV
    try:
        with session_scope(database_url=database_url or settings.database_url) as session:
            outcome = import_transactions(
                raws,
                session=session,
                profile=profile,
                skip_duplicates=skip_duplicates,
                strict=settings.strict_duplicate_check,
            )
    except Exception as e:
        _err(f"import failed: {e}")
        return 1

    print(f"imported={outcome.imported}\tskipped={outcome.skipped}\terrors={len(outcome.errors)}")
    for msg in outcome.errors:
        print(f"  {msg}", file=sys.stderr)
    return 0 if outcome.imported or outcome.skipped else 1


def cmd_extract_screenshot(
    image_path: str,
    *,
    persist: bool = False,
    database_url: str | None = None,
    model: str | None = None,
) -> int:
    """Extract processor transactions from a screenshot and print them as JSON."""

    from .extraction import extract_transactions, to_raw_rows

    settings = Settings.from_env()
    p = Path(image_path)
    try:
        image = p.read_bytes()
    except FileNotFoundError:
        _err(f"File not found: {image_path}")
        return 1
    media_type = "image/jpeg" if p.suffix.lower() in {".jpg", ".jpeg"} else "image/png"

    try:
        extracted = extract_transactions(
            image, media_type=media_type, model=model or settings.extraction_model
        )
    except (RuntimeError, ValueError) as e:
        _err(f"extraction failed: {e}")
        return 1

    rows = to_raw_rows(extracted)
    print(json.dumps(rows, ensure_ascii=False, indent=2))

    if persist and rows:
        from db.client import session_scope

        from .api import import_transactions
        from .normalizers import PROCESSOR_EXTRACTED

        try:
            with session_scope(database_url=database_url or settings.database_url) as session:
                outcome = import_transactions(
                    rows, session=session, profile=PROCESSOR_EXTRACTED, skip_duplicates=True
                )
        except Exception as e:
            _err(f"persistence failed: {e}")
            return 1
        print(
            f"imported={outcome.imported}\tskipped={outcome.skipped}"
            f"\terrors={len(outcome.errors)}",
            file=sys.stderr,
        )
    return 0


def cmd_dashboard(
    *,
    year: int | None = None,
    database_url: str | None = None,
    as_json: bool = False,
) -> int:
    """Print yearly totals, per-project and per-month breakdowns."""

    from db.client import session_scope

    from .dashboard import load_dashboard

    settings = Settings.from_env()
    year = year or date.today().year
    try:
        with session_scope(database_url=database_url or settings.database_url) as session:
            dash = load_dashboard(session, year, usd_to_nok=settings.usd_to_nok)
    except Exception as e:
        _err(f"failed to load dashboard: {e}")
        return 1

    if as_json:
        payload = {
            "year": dash.year,
            "summary": {
                "total_income_nok": dash.total_income_nok,
                "total_expenses_nok": dash.total_expenses_nok,
                "total_profit_nok": dash.total_profit_nok,
                "income_by_currency": dash.income_by_currency,
                "expenses_by_currency": dash.expenses_by_currency,
                "profit_by_currency": dash.profit_by_currency,
                "exchange_rate": dash.exchange_rate,
            },
            "project_breakdown": [
                {
                    "project_id": p.project_id,
                    "project_name": p.project_name,
                    "currencies": [
                        {
                            "currency": c.currency,
                            "income": c.income,
                            "expenses": c.expenses,
                            "profit": c.profit,
                        }
                        for c in p.currencies
                    ],
                }
                for p in dash.projects
            ],
            "monthly_breakdown": [
                {
                    "month": m.month,
                    "currencies": [
                        {
                            "currency": c.currency,
                            "income": c.income,
                            "expenses": c.expenses,
                            "profit": c.profit,
                        }
                        for c in m.currencies
                    ],
                }
                for m in dash.months
            ],
            "transaction_count": dash.transaction_count,
        }
        print(json.dumps(payload, default=str, indent=2))
        return 0

    print(f"Year {dash.year} ({dash.transaction_count} transactions)")
    print(
        f"Income {dash.total_income_nok} NOK\tExpenses {dash.total_expenses_nok} NOK"
        f"\tProfit {dash.total_profit_nok} NOK\t(USD→NOK {dash.exchange_rate})"
    )
    for p in dash.projects:
        for c in p.currencies:
            print(f"{p.project_name}\t{c.currency}\t{c.income}\t{c.expenses}\t{c.profit}")
    for m in dash.months:
        for c in m.currencies:
            print(f"{m.month}\t{c.currency}\t{c.income}\t{c.expenses}\t{c.profit}")
    return 0


def cmd_check_access(email: str, *, database_url: str | None = None) -> int:
    """Print whether ``email`` may sign in; exit 0 when allowed, 3 otherwise."""

    from functools import partial

    from db.client import session_scope

    from .access import AccessConfig, AccessPolicy, AllowedUserStore

    settings = Settings.from_env()
    config = AccessConfig.from_settings(settings)
    store = None
    if config.use_dynamic_store:
        store = AllowedUserStore(
            partial(session_scope, database_url=database_url or settings.database_url)
        )
    decision = AccessPolicy(config, store).check(email)
    print(
        f"allowed={str(decision.allowed).lower()}"
        f"\twhitelist_configured={str(decision.whitelist_configured).lower()}"
        f"\treason={decision.reason}"
    )
    return 0 if decision.allowed else 3


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import processor and bank transactions into the ledger, check for "
        "duplicates, and report yearly totals. Loads settings from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to the CSV export",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files
)


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("check-duplicates")
def check_duplicates_cmd(
    input_path: Annotated[
        Path,
        typer.Option(..., "--input", help="JSON array or CSV export of candidate items"),
    ],
    *,
    profile: str | None = typer.Option(
        None,
        help="Input shape (processor_event, processor_csv, processor_extracted, "
        "processor_ledger, bank_csv, bank_ledger); inferred when omitted.",
    ),
    lenient: bool | None = typer.Option(
        None,
        "--lenient/--strict",
        help="On ledger lookup failure, report everything as new instead of failing.",
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Show which items of a batch already exist in the ledger."""

    _exit(
        cmd_check_duplicates(
            str(input_path), profile=profile, database_url=database_url, lenient=lenient
        )
    )


@app.command("import-stripe-csv")
def import_stripe_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    skip_duplicates: bool = typer.Option(
        False, help="Also drop items the tiered matcher flags as duplicates."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Import a processor payments CSV export."""

    _exit(
        cmd_import_csv(
            str(csv_path),
            kind="stripe",
            database_url=database_url,
            skip_duplicates=skip_duplicates,
        )
    )


@app.command("import-bank-csv")
def import_bank_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    skip_duplicates: bool = typer.Option(
        False, help="Also drop items the tiered matcher flags as duplicates."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Import a bank statement CSV export."""

    _exit(
        cmd_import_csv(
            str(csv_path),
            kind="bank",
            database_url=database_url,
            skip_duplicates=skip_duplicates,
        )
    )


@app.command("extract-screenshot")
def extract_screenshot_cmd(
    image_path: Annotated[
        Path, typer.Option(..., "--image", help="Screenshot of processor payments (PNG/JPEG)")
    ],
    *,
    persist: bool = typer.Option(False, help="Import the extracted transactions."),
    model: str | None = typer.Option(None, help="Override BOOKKEEPING_EXTRACTION_MODEL."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Read processor transactions off a screenshot (OpenAI Responses API)."""

    _exit(
        cmd_extract_screenshot(
            str(image_path), persist=persist, database_url=database_url, model=model
        )
    )


@app.command("dashboard")
def dashboard_cmd(
    *,
    year: int | None = typer.Option(None, help="Calendar year (default: current year)."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Yearly income, expenses and profit."""

    _exit(cmd_dashboard(year=year, database_url=database_url, as_json=as_json))


@app.command("check-access")
def check_access_cmd(
    email: Annotated[str, typer.Argument(help="Email address to check")],
    *,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Evaluate the sign-in allow list for an email address."""

    _exit(cmd_check_access(email, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
