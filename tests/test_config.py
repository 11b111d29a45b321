from decimal import Decimal

import pytest

from bookkeeping.config import DEFAULT_USD_TO_NOK, Settings, parse_email_list


def test_defaults_from_empty_environment():
    s = Settings.from_env({})
    assert s.database_url is None
    assert s.allowed_emails == frozenset()
    assert s.use_allowed_users_table is False
    assert s.strict_duplicate_check is True
    assert s.usd_to_nok == DEFAULT_USD_TO_NOK == Decimal("10.5")


def test_values_from_environment():
    s = Settings.from_env(
        {
            "DATABASE_URL": "sqlite+pysqlite:///ledger.db",
            "USE_ALLOWED_USERS_TABLE": "yes",
            "BOOKKEEPING_STRICT_DUPLICATE_CHECK": "0",
            "BOOKKEEPING_USD_TO_NOK": "11.2",
            "BOOKKEEPING_EXTRACTION_MODEL": "gpt-4.1-mini",
            "STRIPE_WEBHOOK_SECRET": "whsec_x",
        }
    )
    assert s.database_url == "sqlite+pysqlite:///ledger.db"
    assert s.use_allowed_users_table is True
    assert s.strict_duplicate_check is False
    assert s.usd_to_nok == Decimal("11.2")
    assert s.extraction_model == "gpt-4.1-mini"
    assert s.stripe_webhook_secret == "whsec_x"
    assert s.automation_webhook_secret is None


@pytest.mark.parametrize("rate", ["abc", "0", "-1"])
def test_invalid_exchange_rate(rate):
    with pytest.raises(ValueError, match="BOOKKEEPING_USD_TO_NOK"):
        Settings.from_env({"BOOKKEEPING_USD_TO_NOK": rate})


def test_parse_email_list():
    assert parse_email_list(" A@x.no, ,b@X.no ") == frozenset({"a@x.no", "b@x.no"})
    assert parse_email_list(None) == frozenset()
