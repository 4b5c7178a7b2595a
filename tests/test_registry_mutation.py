"""
tests/test_registry_mutation.py -- Construction, insertion and permission changes.

Covers:
  - Bulk load is last-write-wins and resets connection counters
  - add_user / add_key overwrite with a warning and still succeed
  - add_user_or_key refuses duplicates (already_exists)
  - modify_user_perms / modify_key_perms fail fast on missing entries
  - modify_perms: not_found, invalid_credential, and the key path with no hash check
"""

from __future__ import annotations

import logging

import pytest

from auth.models import FailureKind, GeneralKey, Success, User
from auth.registry import Registry, UnknownEntryError


class TestConstruction:
    def test_last_write_wins(self) -> None:
        reg = Registry(
            users=[User(name="a", hash="x", perms=1), User(name="a", hash="y", perms=2)],
            general_keys=[GeneralKey(hash="k", perms=1), GeneralKey(hash="k", perms=7)],
        )
        assert reg.get_user("a").hash == "y"
        assert reg.get_key("k").perms == 7
        assert len(reg) == 2

    def test_connections_start_at_zero(self) -> None:
        reg = Registry(users=[User(name="a", hash="x", perms=1, connections=9)])
        assert reg.connections("a") == 0

    def test_input_records_are_copied(self) -> None:
        user = User(name="a", hash="x", perms=1)
        reg = Registry(users=[user])
        user.perms = 100
        assert reg.get_user("a").perms == 1

    def test_empty_registry(self) -> None:
        reg = Registry()
        assert len(reg) == 0
        assert reg.list_users() == []
        assert reg.get_user("anyone") is None
        assert reg.get_key("anything") is None

    def test_list_users_sorted_by_name(self) -> None:
        reg = Registry(users=[User(name="zed", hash="1", perms=0), User(name="amy", hash="2", perms=0)])
        assert [u.name for u in reg.list_users()] == ["amy", "zed"]


class TestOverwritingInserts:
    def test_add_user_new(self, registry: Registry) -> None:
        assert registry.add_user(User(name="bob", hash="B", perms=2)) == Success()
        assert registry.login("B", "bob") == Success(2)

    def test_add_user_overwrites_with_warning(self, registry: Registry, caplog: pytest.LogCaptureFixture) -> None:
        registry.login("H1", "admin")
        with caplog.at_level(logging.WARNING, logger="keyward.registry"):
            result = registry.add_user(User(name="admin", hash="H2", perms=1))
        assert result.ok
        assert "overwriting user admin" in caplog.text
        assert registry.get_user("admin").hash == "H2"
        assert registry.connections("admin") == 0

    def test_add_key_overwrites_with_warning(self, registry: Registry, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="keyward.registry"):
            result = registry.add_key(GeneralKey(hash="K1", perms=9))
        assert result.ok
        assert "overwriting key" in caplog.text
        assert registry.login("K1") == Success(9)

    def test_add_key_new_has_no_warning(self, registry: Registry, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="keyward.registry"):
            registry.add_key(GeneralKey(hash="K2", perms=1))
        assert not [r for r in caplog.records if r.levelno == logging.WARNING]


class TestProtectiveInsert:
    def test_user_twice(self, registry: Registry) -> None:
        first = registry.add_user_or_key(User(name="bob", hash="B", perms=2))
        second = registry.add_user_or_key(User(name="bob", hash="other", perms=8))
        assert first.ok
        assert second.kind is FailureKind.already_exists
        assert second.message == "user already exist"
        stored = registry.get_user("bob")
        assert (stored.hash, stored.perms) == ("B", 2)

    def test_existing_key(self, registry: Registry) -> None:
        result = registry.add_user_or_key(GeneralKey(hash="K1", perms=0))
        assert result.kind is FailureKind.already_exists
        assert result.message == "key already exist"
        assert registry.get_key("K1").perms == 5

    def test_new_key(self, registry: Registry) -> None:
        assert registry.add_user_or_key(GeneralKey(hash="K9", perms=4)).ok
        assert registry.login("K9") == Success(4)

    def test_rejects_other_types(self, registry: Registry) -> None:
        with pytest.raises(TypeError):
            registry.add_user_or_key({"hash": "K3", "perms": 1})


class TestPermissionChanges:
    def test_modify_user_perms(self, registry: Registry) -> None:
        assert registry.modify_user_perms("admin", 3) == Success()
        assert registry.login("H1", "admin") == Success(3)

    def test_modify_key_perms(self, registry: Registry) -> None:
        assert registry.modify_key_perms("K1", 0).ok
        assert registry.login("K1") == Success(0)

    def test_unguarded_primitives_fail_fast(self, registry: Registry) -> None:
        with pytest.raises(UnknownEntryError):
            registry.modify_user_perms("nobody", 1)
        with pytest.raises(UnknownEntryError):
            registry.modify_key_perms("K404", 1)

    def test_modify_perms_user_correct_hash(self, registry: Registry) -> None:
        result = registry.modify_perms(User(name="admin", hash="H1", perms=10), 42)
        assert result.ok
        assert registry.get_user("admin").perms == 42

    def test_modify_perms_user_wrong_hash(self, registry: Registry) -> None:
        result = registry.modify_perms(User(name="admin", hash="nope", perms=10), 42)
        assert result.kind is FailureKind.invalid_credential
        assert result.message == "invalid hash"
        assert registry.get_user("admin").perms == 10

    def test_modify_perms_unknown_user(self, registry: Registry) -> None:
        result = registry.modify_perms(User(name="ghost", hash="H1", perms=0), 1)
        assert result.kind is FailureKind.not_found
        assert result.message == "user does not exist"

    def test_modify_perms_key(self, registry: Registry) -> None:
        """The record's hash is the lookup key; its perms field is ignored."""
        assert registry.modify_perms(GeneralKey(hash="K1", perms=-50), 6).ok
        assert registry.get_key("K1").perms == 6

    def test_modify_perms_unknown_key(self, registry: Registry) -> None:
        result = registry.modify_perms(GeneralKey(hash="K404", perms=0), 6)
        assert result.kind is FailureKind.not_found
        assert result.message == "key does not exist"

    def test_modify_perms_keeps_connections(self, registry: Registry) -> None:
        registry.login("H1", "admin")
        registry.modify_perms(User(name="admin", hash="H1", perms=10), 1)
        assert registry.connections("admin") == 1
