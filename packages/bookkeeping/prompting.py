"""Prompt construction for processor-screenshot extraction.

This module builds:
- The system instructions for reading payment rows off a dashboard screenshot.
- The user content (text + image part) for the OpenAI Responses API.
- The strict ``text.format`` JSON Schema object for the response.
"""

from __future__ import annotations

import base64
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

EXTRACTION_FIELDS: tuple[str, ...] = (
    "stripe_payment_id",
    "amount",
    "currency",
    "date",
    "customer_email",
    "status",
)


def build_system_instructions() -> str:
    """Return the system instructions for screenshot transaction extraction."""

    return (
        "You extract payment transactions from screenshots of a payment processor "
        "dashboard. Return every visible payment row and nothing else. Copy payment "
        "identifiers (pi_..., ch_..., py_...) character for character. Output JSON only "
        "that conforms to the specified schema."
    )


def build_user_content(image: bytes, *, media_type: str = "image/png") -> list[dict[str, Any]]:
    """Build the user message: extraction rules plus the screenshot as a data URL.

    Amounts are requested in major units as plain numbers
    (``NOK 3,999.00`` → ``3999``); the caller converts to minor units once.
    """

    rules = "\n".join(
        [
            "Extract each transaction visible in this screenshot.",
            "For each transaction return:",
            "- stripe_payment_id: the payment identifier exactly as shown",
            "- amount: the amount in major units as a plain number "
            "(e.g. NOK 3,999.00 → 3999, $12.50 → 12.5); never multiply by 100",
            "- currency: lower-case 3-letter code (nok, usd, eur)",
            "- date: YYYY-MM-DD when visible, else null",
            "- customer_email: when visible, else null",
            "- status: as shown (e.g. succeeded, refunded), else null",
        ]
    )
    encoded = base64.b64encode(image).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {"type": "input_text", "text": rules},
                {"type": "input_image", "image_url": f"data:{media_type};base64,{encoded}"},
            ],
        }
    ]


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``text.format`` object.

    Shape: ``{"transactions": [{stripe_payment_id, amount, currency, date,
    customer_email, status}, ...]}`` with nullable optional fields.
    """

    nullable_str = {"type": ["string", "null"]}
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "screenshot_transactions",
        "schema": {
            "type": "object",
            "properties": {
                "transactions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "stripe_payment_id": {"type": "string"},
                            "amount": {"type": "number", "minimum": 0},
                            "currency": {"type": "string"},
                            "date": nullable_str,
                            "customer_email": nullable_str,
                            "status": nullable_str,
                        },
                        "required": list(EXTRACTION_FIELDS),
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["transactions"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "EXTRACTION_FIELDS",
    "build_system_instructions",
    "build_user_content",
    "build_response_format",
]
