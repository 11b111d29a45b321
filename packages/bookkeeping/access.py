"""Email allow-list access policy.

One :class:`AccessPolicy` is built at process start from an explicit
:class:`AccessConfig` and handed to whatever serves requests. Resolution order:

1. a non-empty static allow list decides alone;
2. otherwise, when the dynamic store is enabled, the ``allowed_users`` table
   decides, and any store failure denies access;
3. otherwise no whitelist is configured and everyone is allowed
   (development mode).
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.ledger import AllowedUser

from .config import Settings
from .errors import LookupUnavailable
from .logging_setup import get_logger

_log = get_logger("bookkeeping.access")

SessionFactory = Callable[[], AbstractContextManager[Session]]


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True, slots=True)
class AccessConfig:
    static_allow_list: frozenset[str] = frozenset()
    use_dynamic_store: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessConfig:
        return cls(
            static_allow_list=frozenset(normalize_email(e) for e in settings.allowed_emails),
            use_dynamic_store=settings.use_allowed_users_table,
        )


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    whitelist_configured: bool
    reason: str


class AllowedUserStore:
    """``allowed_users`` table access through a session factory."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def contains(self, email: str) -> bool:
        try:
            with self._session_factory() as s:
                found = s.execute(
                    select(AllowedUser.id).where(AllowedUser.email == normalize_email(email))
                ).first()
        except (SQLAlchemyError, RuntimeError) as e:
            raise LookupUnavailable(f"allowed_users lookup failed: {e}") from e
        return found is not None

    def add(self, email: str, *, name: str | None = None, created_by: str | None = None) -> bool:
        """Insert ``email``; return False when it is already present."""

        try:
            with self._session_factory() as s:
                s.add(
                    AllowedUser(
                        email=normalize_email(email),
                        name=name,
                        created_by=normalize_email(created_by) or None,
                    )
                )
        except IntegrityError:
            return False
        return True

    def emails(self) -> list[str]:
        with self._session_factory() as s:
            return list(s.execute(select(AllowedUser.email).order_by(AllowedUser.email)).scalars())


class AccessPolicy:
    def __init__(self, config: AccessConfig, store: AllowedUserStore | None = None) -> None:
        self.config = config
        self.store = store

    @property
    def whitelist_configured(self) -> bool:
        return bool(self.config.static_allow_list) or self.config.use_dynamic_store

    def check(self, email: str | None) -> AccessDecision:
        addr = normalize_email(email)
        if self.config.static_allow_list:
            allowed = addr in self.config.static_allow_list
            return AccessDecision(allowed, True, "static_list" if allowed else "not_in_static_list")

        if self.config.use_dynamic_store:
            if self.store is None:
                _log.error("access:store_missing email=%s", addr)
                return AccessDecision(False, True, "store_unavailable")
            try:
                allowed = self.store.contains(addr)
            except LookupUnavailable as e:
                _log.error("access:store_error email=%s error=%s", addr, e)
                return AccessDecision(False, True, "store_unavailable")
            return AccessDecision(allowed, True, "store" if allowed else "not_in_store")

        return AccessDecision(True, False, "no_whitelist")

    def is_allowed(self, email: str | None) -> bool:
        return self.check(email).allowed


__all__ = [
    "AccessConfig",
    "AccessDecision",
    "AccessPolicy",
    "AllowedUserStore",
    "normalize_email",
]
