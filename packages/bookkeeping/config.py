"""Process-level settings read once from the environment.

Entrypoints load ``.env`` (via ``python-dotenv``) before calling
:meth:`Settings.from_env`; library modules receive the resulting object (or
the pieces they need) explicitly instead of reading the environment ad hoc.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

DEFAULT_USD_TO_NOK = Decimal("10.5")
DEFAULT_EXTRACTION_MODEL = "gpt-4.1"


def _parse_bool(raw: str | None, *, default: bool) -> bool:
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    return default


def parse_email_list(raw: str | None) -> frozenset[str]:
    """Split a comma-separated list into trimmed, lower-cased emails."""

    if not raw:
        return frozenset()
    return frozenset(e.strip().lower() for e in raw.split(",") if e.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str | None = None
    allowed_emails: frozenset[str] = frozenset()
    use_allowed_users_table: bool = False
    # When False, a failed ledger lookup degrades to "nothing is a duplicate"
    # with a warning instead of failing the duplicate check.
    strict_duplicate_check: bool = True
    usd_to_nok: Decimal = DEFAULT_USD_TO_NOK
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    stripe_webhook_secret: str | None = None
    automation_webhook_secret: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        rate_raw = env.get("BOOKKEEPING_USD_TO_NOK")
        try:
            usd_to_nok = Decimal(rate_raw) if rate_raw else DEFAULT_USD_TO_NOK
        except InvalidOperation as exc:
            raise ValueError(f"BOOKKEEPING_USD_TO_NOK is not a number: {rate_raw!r}") from exc
        if usd_to_nok <= 0:
            raise ValueError("BOOKKEEPING_USD_TO_NOK must be positive")

        return cls(
            database_url=env.get("DATABASE_URL") or None,
            allowed_emails=parse_email_list(env.get("ALLOWED_EMAILS")),
            use_allowed_users_table=_parse_bool(
                env.get("USE_ALLOWED_USERS_TABLE"), default=False
            ),
            strict_duplicate_check=_parse_bool(
                env.get("BOOKKEEPING_STRICT_DUPLICATE_CHECK"), default=True
            ),
            usd_to_nok=usd_to_nok,
            extraction_model=env.get("BOOKKEEPING_EXTRACTION_MODEL") or DEFAULT_EXTRACTION_MODEL,
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET") or None,
            automation_webhook_secret=env.get("AUTOMATION_WEBHOOK_SECRET") or None,
        )


__all__ = ["Settings", "parse_email_list", "DEFAULT_USD_TO_NOK", "DEFAULT_EXTRACTION_MODEL"]
