"""Inbound webhook handlers: processor events and automation payloads.

Both handlers verify the caller first and raise :class:`WebhookRejected` on a
bad signature or shared secret. Accepted payloads go through the regular import
path (normalizer ``processor_event`` profile → persistence gate), so a
re-delivered event is a no-op rather than a second ledger row.
"""

from __future__ import annotations

import hmac
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import stripe
from sqlalchemy.orm import Session

from .api import import_transactions
from .errors import WebhookRejected
from .logging_setup import get_logger
from .normalizers import PAYMENT_ID_RULES, PROCESSOR_EVENT, first_value

_log = get_logger("bookkeeping.webhooks")

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
SIGNATURE_TOLERANCE_SEC = 300


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    # "imported" | "duplicate" | "ignored" | "rejected"
    status: str
    message: str
    reference: str | None = None


def _import_one(
    session: Session, raw: Mapping[str, Any], reference: str | None
) -> WebhookOutcome:
    outcome = import_transactions([raw], session=session, profile=PROCESSOR_EVENT)
    if outcome.errors:
        _log.warning("webhook:rejected reference=%s reason=%s", reference, outcome.errors[0])
        return WebhookOutcome("rejected", outcome.errors[0], reference)
    if outcome.imported:
        _log.info("webhook:imported reference=%s", reference)
        return WebhookOutcome("imported", "Transaction saved", reference)
    _log.info("webhook:duplicate reference=%s", reference)
    return WebhookOutcome("duplicate", "Transaction already recorded", reference)


def payment_intent_to_raw(obj: Mapping[str, Any]) -> dict[str, Any]:
    """Project a PaymentIntent object onto the fields the normalizer reads.

    ``amount`` is an integer in minor units on PaymentIntents.
    """

    return {
        "stripe_payment_id": obj.get("id"),
        "amount": obj.get("amount_received") or obj.get("amount"),
        "currency": obj.get("currency"),
        "customer_email": obj.get("receipt_email"),
        "description": obj.get("description"),
        "created": obj.get("created"),
        "status": obj.get("status"),
    }


def handle_stripe_event(
    payload: bytes | str,
    signature: str | None,
    *,
    secret: str | None,
    session: Session,
) -> WebhookOutcome:
    """Verify a processor webhook and record ``payment_intent.succeeded`` events.

    Raises ``RuntimeError`` when no signing secret is configured.
    """

    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not set; cannot verify webhooks")
    if not signature:
        raise WebhookRejected("No signature provided")

    body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    try:
        stripe.WebhookSignature.verify_header(
            body, signature, secret, SIGNATURE_TOLERANCE_SEC
        )
    except stripe.SignatureVerificationError as e:
        _log.warning("webhook:signature_failed error=%s", e)
        raise WebhookRejected(f"Webhook signature verification failed: {e}") from e

    try:
        event = json.loads(body)
    except json.JSONDecodeError as e:
        raise WebhookRejected("Webhook payload is not valid JSON") from e
    if not isinstance(event, Mapping):
        raise WebhookRejected("Webhook payload is not a JSON object")

    event_type = event.get("type")
    if event_type != PAYMENT_SUCCEEDED:
        _log.info("webhook:ignored type=%s", event_type)
        return WebhookOutcome("ignored", f"Unhandled event type: {event_type}")

    data = event.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        raise WebhookRejected("Webhook event has no data object")
    raw = payment_intent_to_raw(obj)
    return _import_one(session, raw, raw.get("stripe_payment_id"))


def handle_automation_payload(
    body: Mapping[str, Any],
    *,
    provided_secret: str | None,
    expected_secret: str | None,
    session: Session,
) -> WebhookOutcome:
    """Record processor-like payloads posted by an automation service.

    When ``expected_secret`` is configured the ``x-webhook-secret`` value must
    match it. Payloads carrying a payment id and an amount become processor
    ledger rows; everything else is ignored.
    """

    if expected_secret and not hmac.compare_digest(
        (provided_secret or "").encode("utf-8"), expected_secret.encode("utf-8")
    ):
        _log.warning("webhook:unauthorized source=automation")
        raise WebhookRejected("Unauthorized")

    if not isinstance(body, Mapping):
        raise WebhookRejected("Invalid request body")

    payment_id = first_value(body, PAYMENT_ID_RULES)
    has_amount = any(rule.present(body) for rule in PROCESSOR_EVENT.amount_rules)
    if not (payment_id and has_amount):
        _log.info("webhook:ignored source=automation keys=%d", len(body))
        return WebhookOutcome("ignored", "Payload is not a processor transaction")

    return _import_one(session, body, payment_id)


__all__ = [
    "PAYMENT_SUCCEEDED",
    "WebhookOutcome",
    "payment_intent_to_raw",
    "handle_stripe_event",
    "handle_automation_payload",
]
