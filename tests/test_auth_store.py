"""Unit tests for auth/store.py -- credential, token and audit repositories.

Covers:
- CredentialStore lookups, duplicate usernames and best-effort timestamps
- TokenStore exists/create/update/delete and the single-slot invariant
- TokenStore.exists() rejects columns outside the lookup whitelist
- AuditLogStore.add() records file/line/trace from a real exception
- AuditLogStore.add() swallows DB failures
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import ApiAccessError
from auth.models import AuditLogEntry, User
from auth.store import AuditLogStore, CredentialStore, entry_from_exception, ping
from auth.tokens import hash_password

# ---------------------------------------------------------------------------
# CredentialStore
# ---------------------------------------------------------------------------


class TestCredentialStore:
    def test_find_user_returns_record(self, stores, seeded_user) -> None:
        user = stores.credentials.find_user("alice")
        assert user is not None
        assert user.id == seeded_user.id
        assert user.password_hash.startswith("$2")
        assert user.created_at
        assert user.last_login is None
        assert user.last_logout is None

    def test_find_user_is_case_sensitive(self, stores, seeded_user) -> None:
        assert stores.credentials.find_user("ALICE") is None

    def test_find_unknown_user_returns_none(self, stores) -> None:
        assert stores.credentials.find_user("nobody") is None

    def test_duplicate_username_raises(self, stores, seeded_user) -> None:
        with pytest.raises(IntegrityError):
            stores.credentials.create_user(User(username="alice", password_hash=hash_password("x")))

    def test_verify_password(self, stores, seeded_user) -> None:
        assert stores.credentials.verify_password("correct-horse-battery", seeded_user.password_hash)
        assert not stores.credentials.verify_password("wrong", seeded_user.password_hash)

    def test_update_last_login_and_logout(self, stores, seeded_user) -> None:
        assert stores.credentials.update_last_login(seeded_user.id) is True
        assert stores.credentials.update_last_logout(seeded_user.id) is True
        user = stores.credentials.get_by_id(seeded_user.id)
        assert user.last_login is not None
        assert user.last_logout is not None

    def test_update_last_login_unknown_id(self, stores) -> None:
        assert stores.credentials.update_last_login(9999) is False

    def test_timestamp_failure_is_swallowed(self, stores, seeded_user) -> None:
        """A DB failure during the best-effort stamp returns False instead of raising."""
        broken = CredentialStore(stores.engine)
        with stores.engine.connect() as conn:
            conn.exec_driver_sql("DROP TABLE users")
            conn.commit()
        assert broken.update_last_login(seeded_user.id) is False


# ---------------------------------------------------------------------------
# TokenStore
# ---------------------------------------------------------------------------


class TestTokenStore:
    def test_exists_by_username_and_token(self, stores) -> None:
        assert stores.tokens.create("alice", "tok-1") is True
        assert stores.tokens.exists("username", "alice")
        assert stores.tokens.exists("token", "tok-1")
        assert not stores.tokens.exists("token", "tok-2")
        assert not stores.tokens.exists("username", "bob")

    def test_exists_rejects_unknown_field(self, stores) -> None:
        with pytest.raises(ValueError):
            stores.tokens.exists("id", "1")

    def test_create_twice_keeps_one_record(self, stores) -> None:
        assert stores.tokens.create("alice", "tok-1") is True
        assert stores.tokens.create("alice", "tok-2") is False
        assert stores.tokens.count("alice") == 1
        assert stores.tokens.get("alice").token == "tok-1"

    def test_update_overwrites_slot(self, stores) -> None:
        stores.tokens.create("alice", "tok-1")
        assert stores.tokens.update("alice", "tok-2") is True
        record = stores.tokens.get("alice")
        assert record.token == "tok-2"
        assert not stores.tokens.exists("token", "tok-1")
        assert stores.tokens.count() == 1

    def test_update_without_record_fails(self, stores) -> None:
        assert stores.tokens.update("alice", "tok-1") is False

    def test_delete(self, stores) -> None:
        stores.tokens.create("alice", "tok-1")
        assert stores.tokens.delete("alice") is True
        assert stores.tokens.get("alice") is None
        assert stores.tokens.delete("alice") is False

    def test_one_slot_per_username(self, stores) -> None:
        stores.tokens.create("alice", "tok-a")
        stores.tokens.create("bob", "tok-b")
        assert stores.tokens.count() == 2
        assert stores.tokens.count("alice") == 1


# ---------------------------------------------------------------------------
# AuditLogStore
# ---------------------------------------------------------------------------


def _raise_access_error() -> None:
    raise ApiAccessError("Token doesn't exist.", 404)


class TestAuditLog:
    def test_entry_from_exception_points_at_raise_site(self) -> None:
        try:
            _raise_access_error()
        except ApiAccessError as exc:
            entry = entry_from_exception(exc, "/api/v1/auth/renew")
        assert entry.code == 404
        assert entry.message == "Token doesn't exist."
        assert entry.accessed_url_path == "/api/v1/auth/renew"
        assert entry.file.endswith("test_auth_store.py")
        assert entry.line > 0
        assert "_raise_access_error" in entry.trace

    def test_entry_for_unexpected_error_is_500(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            entry = entry_from_exception(exc, "/x")
        assert entry.code == 500
        assert entry.message == "boom"

    def test_add_and_list(self, stores) -> None:
        first = stores.audit_log.add(AuditLogEntry(accessed_url_path="/a", message="one", code=400))
        second = stores.audit_log.add(AuditLogEntry(accessed_url_path="/b", message="two", code=401))
        assert first is not None and second is not None
        entries = stores.audit_log.list_recent()
        assert [e.message for e in entries] == ["two", "one"]
        assert entries[0].created_at

    def test_add_failure_returns_none(self, stores) -> None:
        audit_log = AuditLogStore(stores.engine)
        with stores.engine.connect() as conn:
            conn.exec_driver_sql("DROP TABLE auth_logs")
            conn.commit()
        assert audit_log.add(AuditLogEntry(accessed_url_path="/a", message="m", code=500)) is None


def test_ping(stores) -> None:
    assert ping(stores.engine) is True
