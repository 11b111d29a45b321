import hashlib
import hmac
import json
import time
from datetime import date

import pytest

from db.client import session_scope

from bookkeeping.errors import WebhookRejected
from bookkeeping.webhooks import (
    handle_automation_payload,
    handle_stripe_event,
    payment_intent_to_raw,
)
from tests.helpers.db import all_transactions

SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = SECRET, ts: int | None = None) -> str:
    ts = int(time.time()) if ts is None else ts
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode(), hashlib.sha256)
    return f"t={ts},v1={mac.hexdigest()}"


def _event(event_type: str = "payment_intent.succeeded", **obj) -> str:
    intent = {
        "id": "pi_WH1",
        "object": "payment_intent",
        "amount": 399900,
        "amount_received": 399900,
        "currency": "nok",
        "receipt_email": "Kari@Example.no",
        "description": "Workshop",
        "created": 1735689600,
        "status": "succeeded",
    }
    intent.update(obj)
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": intent}})


# ---------------------------------------------------------------------------
# Processor events
# ---------------------------------------------------------------------------


def test_succeeded_event_is_recorded_once(db_url: str):
    payload = _event()
    with session_scope(database_url=db_url) as s:
        first = handle_stripe_event(payload, _sign(payload), secret=SECRET, session=s)
    with session_scope(database_url=db_url) as s:
        again = handle_stripe_event(payload.encode(), _sign(payload), secret=SECRET, session=s)

    assert (first.status, first.reference) == ("imported", "pi_WH1")
    assert again.status == "duplicate"
    (row,) = all_transactions(database_url=db_url)
    assert row.source_type == "stripe"
    assert row.source_reference == "pi_WH1"
    assert row.amount == 399900
    assert row.currency == "nok"
    assert row.type == "income"
    assert row.customer_email == "kari@example.no"
    assert row.transaction_date == date(2025, 1, 1)


def test_other_event_types_are_ignored(db_url: str):
    payload = _event("charge.refunded")
    with session_scope(database_url=db_url) as s:
        outcome = handle_stripe_event(payload, _sign(payload), secret=SECRET, session=s)
    assert outcome.status == "ignored"
    assert all_transactions(database_url=db_url) == []


def test_bad_signature_is_rejected(db_url: str):
    payload = _event()
    with session_scope(database_url=db_url) as s:
        with pytest.raises(WebhookRejected, match="signature"):
            handle_stripe_event(payload, _sign(payload, "whsec_other"), secret=SECRET, session=s)
        with pytest.raises(WebhookRejected, match="No signature"):
            handle_stripe_event(payload, None, secret=SECRET, session=s)


def test_stale_signature_is_rejected(db_url: str):
    payload = _event()
    stale = _sign(payload, ts=int(time.time()) - 3600)
    with session_scope(database_url=db_url) as s:
        with pytest.raises(WebhookRejected):
            handle_stripe_event(payload, stale, secret=SECRET, session=s)


def test_missing_secret_is_a_configuration_error(db_url: str):
    payload = _event()
    with session_scope(database_url=db_url) as s:
        with pytest.raises(RuntimeError, match="STRIPE_WEBHOOK_SECRET"):
            handle_stripe_event(payload, _sign(payload), secret=None, session=s)


def test_unparseable_amount_is_reported_not_raised(db_url: str):
    payload = _event(amount_received=None, amount="abc")
    with session_scope(database_url=db_url) as s:
        outcome = handle_stripe_event(payload, _sign(payload), secret=SECRET, session=s)
    assert outcome.status == "rejected"
    assert "invalid amount" in outcome.message
    assert all_transactions(database_url=db_url) == []


def test_payment_intent_projection_prefers_amount_received():
    raw = payment_intent_to_raw({"id": "pi_1", "amount": 500, "amount_received": 450})
    assert raw["stripe_payment_id"] == "pi_1"
    assert raw["amount"] == 450


# ---------------------------------------------------------------------------
# Automation payloads
# ---------------------------------------------------------------------------


def test_automation_payload_requires_shared_secret(db_url: str):
    body = {"payment_intent_id": "pi_AUT1", "amount": "39.99", "currency": "usd"}
    with session_scope(database_url=db_url) as s:
        with pytest.raises(WebhookRejected, match="Unauthorized"):
            handle_automation_payload(
                body, provided_secret="wrong", expected_secret="s3cret", session=s
            )
        outcome = handle_automation_payload(
            body, provided_secret="s3cret", expected_secret="s3cret", session=s
        )
    assert outcome.status == "imported"
    (row,) = all_transactions(database_url=db_url)
    assert row.amount == 3999
    assert row.currency == "usd"
    assert row.source_reference == "pi_AUT1"


def test_automation_payload_without_secret_configured_is_accepted(db_url: str):
    body = {"stripe_payment_id": "pi_AUT2", "amount": 1250, "currency": "eur"}
    with session_scope(database_url=db_url) as s:
        outcome = handle_automation_payload(
            body, provided_secret=None, expected_secret=None, session=s
        )
    assert outcome.status == "imported"


def test_automation_payload_without_amount_is_ignored(db_url: str):
    with session_scope(database_url=db_url) as s:
        outcome = handle_automation_payload(
            {"payment_intent_id": "pi_AUT3", "note": "hello"},
            provided_secret=None,
            expected_secret=None,
            session=s,
        )
    assert outcome.status == "ignored"
    assert all_transactions(database_url=db_url) == []


@pytest.mark.parametrize("payload", ["[]", '"ok"', '{"type": "payment_intent.succeeded"}'])
def test_signed_body_without_event_object_is_rejected(db_url: str, payload: str):
    with session_scope(database_url=db_url) as s:
        with pytest.raises(WebhookRejected):
            handle_stripe_event(payload, _sign(payload), secret=SECRET, session=s)
    assert all_transactions(database_url=db_url) == []
