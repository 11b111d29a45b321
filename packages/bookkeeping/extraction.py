"""Read processor transactions off a dashboard screenshot with an LLM.

One Responses API call per screenshot, no retries. The reply is decoded as
JSON (markdown fences tolerated), each item validated with
:class:`~bookkeeping.models.ExtractedTransaction`, and invalid items dropped
with a warning. Amounts stay in major units here; they are converted to minor
units exactly once by the ``processor_extracted`` normalizer profile.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import Mapping
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from . import prompting
from .config import DEFAULT_EXTRACTION_MODEL
from .logging_setup import get_logger
from .models import ExtractedTransaction

_logger = get_logger("bookkeeping.extraction")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _create_client() -> OpenAI:
    if not os.getenv("OPENAI_API_KEY"):
        raise RuntimeError("OPENAI_API_KEY is not set; cannot call the extraction model")
    return OpenAI()


def _response_text(resp: Any) -> str:
    """Locate the text output of a Responses SDK result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            text = txt_obj if isinstance(txt_obj, str) else getattr(txt_obj, "value", None)
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def parse_extraction_reply(text: str) -> list[Mapping[str, Any]]:
    """Decode a model reply into raw transaction mappings.

    Accepts a bare JSON array or an object with a ``transactions`` array,
    optionally wrapped in a markdown code fence.
    """

    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON") from e
    if isinstance(decoded, Mapping):
        decoded = decoded.get("transactions")
    if not isinstance(decoded, list):
        raise ValueError("Model output did not contain a transactions array")
    return [item for item in decoded if isinstance(item, Mapping)]


def validate_items(items: list[Mapping[str, Any]]) -> list[ExtractedTransaction]:
    out: list[ExtractedTransaction] = []
    for pos, item in enumerate(items):
        try:
            out.append(ExtractedTransaction.model_validate(item))
        except ValidationError as e:
            _logger.warning(
                "extraction:item_dropped index=%d errors=%d", pos, e.error_count()
            )
    return out


def extract_transactions(
    image: bytes,
    *,
    media_type: str = "image/png",
    model: str = DEFAULT_EXTRACTION_MODEL,
) -> list[ExtractedTransaction]:
    """Extract processor transactions from a screenshot.

    Raises ``RuntimeError`` when no API key is configured and ``ValueError``
    when the reply cannot be decoded.
    """

    if not image:
        raise ValueError("image is empty")

    client = _create_client()
    _logger.info(
        "extraction:request bytes=%d media_type=%s model=%s", len(image), media_type, model
    )
    t0 = time.perf_counter()
    resp = client.responses.create(
        model=model,
        instructions=prompting.build_system_instructions(),
        input=prompting.build_user_content(image, media_type=media_type),
        text={"format": prompting.build_response_format()},
    )
    items = parse_extraction_reply(_response_text(resp))
    valid = validate_items(items)
    _logger.info(
        "extraction:done items=%d valid=%d latency_ms=%.2f",
        len(items),
        len(valid),
        (time.perf_counter() - t0) * 1000.0,
    )
    return valid


def to_raw_rows(extracted: list[ExtractedTransaction]) -> list[dict[str, Any]]:
    """Dump validated items for the ``processor_extracted`` normalizer profile."""

    return [item.model_dump() for item in extracted]


__all__ = [
    "extract_transactions",
    "parse_extraction_reply",
    "validate_items",
    "to_raw_rows",
]
