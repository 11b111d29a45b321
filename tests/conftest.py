"""Pytest configuration for test isolation.

- Every test gets settings from a clean environment: variables the app reads
  are removed so a developer's ``.env`` or shell cannot leak into assertions.
- The shared SQLAlchemy engine is disposed after each test so tests can bind
  their own SQLite files.
- The ``bookkeeping`` logger is restored after each test; the CLI configures
  logging (and disables propagation), which would otherwise hide records from
  ``caplog`` in later tests.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from db.client import reset_engine

from tests.helpers.db import bootstrap_sqlite_db

_APP_ENV_VARS = (
    "DATABASE_URL",
    "ALLOWED_EMAILS",
    "USE_ALLOWED_USERS_TABLE",
    "BOOKKEEPING_STRICT_DUPLICATE_CHECK",
    "BOOKKEEPING_USD_TO_NOK",
    "BOOKKEEPING_EXTRACTION_MODEL",
    "BOOKKEEPING_LOG_LEVEL",
    "STRIPE_WEBHOOK_SECRET",
    "AUTOMATION_WEBHOOK_SECRET",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _APP_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # The CLI loads .env from the CWD; run each test from an empty directory.
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_db_and_logging():
    yield
    reset_engine()
    import bookkeeping.logging_setup as logging_setup

    logger = logging.getLogger("bookkeeping")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging_setup._CONFIGURED = False


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
