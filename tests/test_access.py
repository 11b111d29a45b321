from contextlib import contextmanager
from functools import partial

from db.client import session_scope

from bookkeeping.access import AccessConfig, AccessPolicy, AllowedUserStore, normalize_email
from bookkeeping.config import Settings


def test_static_allow_list_decides_alone():
    settings = Settings.from_env({"ALLOWED_EMAILS": " Kari@Example.no ,ola@example.no"})
    policy = AccessPolicy(AccessConfig.from_settings(settings))

    allowed = policy.check("KARI@example.NO ")
    assert allowed.allowed is True
    assert allowed.whitelist_configured is True
    assert allowed.reason == "static_list"

    denied = policy.check("eve@example.no")
    assert denied.allowed is False
    assert denied.reason == "not_in_static_list"
    assert policy.is_allowed(None) is False


def test_no_whitelist_allows_everyone():
    policy = AccessPolicy(AccessConfig.from_settings(Settings.from_env({})))
    decision = policy.check("anyone@example.no")
    assert decision.allowed is True
    assert decision.whitelist_configured is False
    assert decision.reason == "no_whitelist"


def test_dynamic_store(db_url: str):
    store = AllowedUserStore(partial(session_scope, database_url=db_url))
    assert store.add("Ops@Example.no", name="Ops", created_by="Admin@Example.no") is True
    assert store.add("ops@example.no") is False
    assert store.emails() == ["ops@example.no"]

    policy = AccessPolicy(AccessConfig(use_dynamic_store=True), store)
    assert policy.check(" OPS@example.no").reason == "store"
    denied = policy.check("eve@example.no")
    assert (denied.allowed, denied.reason) == (False, "not_in_store")


def test_static_list_takes_precedence_over_store(db_url: str):
    store = AllowedUserStore(partial(session_scope, database_url=db_url))
    store.add("ops@example.no")
    config = AccessConfig(static_allow_list=frozenset({"kari@example.no"}), use_dynamic_store=True)
    policy = AccessPolicy(config, store)
    assert policy.is_allowed("kari@example.no")
    assert not policy.is_allowed("ops@example.no")


def test_store_failure_denies_access():
    @contextmanager
    def _broken_session():
        raise RuntimeError("DATABASE_URL is not set")
        yield  # pragma: no cover

    policy = AccessPolicy(AccessConfig(use_dynamic_store=True), AllowedUserStore(_broken_session))
    decision = policy.check("ops@example.no")
    assert decision.allowed is False
    assert decision.whitelist_configured is True
    assert decision.reason == "store_unavailable"


def test_dynamic_store_enabled_without_store_denies():
    policy = AccessPolicy(AccessConfig(use_dynamic_store=True))
    assert policy.check("ops@example.no").reason == "store_unavailable"


def test_normalize_email():
    assert normalize_email("  A@B.NO ") == "a@b.no"
    assert normalize_email(None) == ""
