"""Exception types shared across the bookkeeping package."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class NormalizationError(ValueError):
    """A raw import record could not be reduced to a ``TransactionRecord``.

    Raised for unparseable amounts, a missing currency, or when no identifier
    can be derived. Batch helpers catch it per item and report the record as
    rejected instead of aborting the batch.
    """

    def __init__(self, reason: str, *, raw: Mapping[str, Any] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class LookupUnavailable(RuntimeError):
    """The existing-ledger read failed, so duplicates could not be checked."""


class WebhookRejected(ValueError):
    """An inbound webhook failed signature or shared-secret verification."""


__all__ = ["NormalizationError", "LookupUnavailable", "WebhookRejected"]
