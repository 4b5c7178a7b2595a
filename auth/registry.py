"""
auth/registry.py -- In-memory registry of users and general keys.

Pattern: Repository over two dicts (user name -> User, key hash -> GeneralKey).
The registry is the only thing that mutates entries; everything it hands out
is a copy.

Login protocol:
  name == ""  -> anonymous: look the hash up among general keys. No session,
                 no connection accounting.
  name != ""  -> named: look the user up, compare the hash, bump the user's
                 connection counter on success.

Result policy:
  Every operation returns Success or Failure and logs the failure. Nothing
  raises for a bad credential or a missing entry, with one exception: the
  unguarded primitives modify_user_perms / modify_key_perms treat a missing
  entry as a caller bug and raise UnknownEntryError.

Insert policy (two APIs on purpose):
  add_user / add_key          overwrite an existing entry, log a warning,
                              and still succeed.
  add_user_or_key             refuses to overwrite (already_exists).

Concurrency:
  One coarse RLock per registry, held for the whole of every operation, so
  the read-modify-write on connections and perms is atomic across threads.

Layer rule: may import from core/ (settings, config snapshot); never from
main.py.
"""

from __future__ import annotations

import hmac
import logging
import threading
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

from auth.models import AuthResult, Credential, Failure, FailureKind, GeneralKey, Success, User
from core.config import RegistryConfig, Settings, get_settings, load_registry_config

logger = logging.getLogger("keyward.registry")

_KEY_PREFIX_LEN = 8


class UnknownEntryError(KeyError):
    """Raised by the unguarded primitives when the target entry does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _same_secret(presented: str, stored: str) -> bool:
    # compare_digest only accepts ASCII str, so compare the UTF-8 bytes.
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


def key_prefix(key_hash: str) -> str:
    """Display form of a key hash. The full value never reaches the log."""
    return key_hash[:_KEY_PREFIX_LEN] + "..."


def _secret_word(user: User) -> str:
    return "key" if user.use_auth_key else "password"


def _fail(kind: FailureKind, message: str) -> Failure:
    logger.error(message)
    return Failure(kind=kind, message=message)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class Registry:
    """Credential and permission registry with per-user connection accounting.

    Usage:
        registry = Registry(users=[User("admin", "H1", 10)], general_keys=[GeneralKey("K1", 5)])
        result = registry.login("H1", "admin")
        if result.ok:
            perms = result.value
        registry.logout("H1", "admin")
    """

    def __init__(
        self,
        users: Iterable[User] = (),
        general_keys: Iterable[GeneralKey] = (),
        *,
        enforce_max_connections: bool = False,
    ) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, User] = {}
        self._keys: dict[str, GeneralKey] = {}
        self.enforce_max_connections = enforce_max_connections
        # Bulk load is last-write-wins with no duplicate warnings.
        for user in users:
            self._users[user.name] = replace(user, connections=0)
        for key in general_keys:
            self._keys[key.hash] = replace(key)
        logger.info(
            "Registry initialized (%d users, %d general keys, enforce_max_connections=%s)",
            len(self._users),
            len(self._keys),
            enforce_max_connections,
        )

    @classmethod
    def from_config(cls, config: RegistryConfig, enforce_max_connections: bool | None = None) -> Registry:
        """Build a registry from a validated snapshot.

        enforce_max_connections=None defers to Settings.enforce_max_connections.
        """
        if enforce_max_connections is None:
            enforce_max_connections = get_settings().enforce_max_connections
        users = [
            User(
                name=u.name,
                hash=u.hash,
                perms=u.perms,
                max_connection=u.max_connection,
                use_auth_key=u.use_auth_key,
            )
            for u in config.users
        ]
        keys = [GeneralKey(hash=k.hash, perms=k.perms) for k in config.general_keys]
        return cls(users, keys, enforce_max_connections=enforce_max_connections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._users) + len(self._keys)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, hash: str, name: str = "", return_full_record: bool = False) -> AuthResult:
        """Authenticate a user (name given) or a general key (name empty).

        Returns Success(perms), or Success(record snapshot) when
        return_full_record is set. A legitimately configured perms of -1 is
        an ordinary Success(-1); failure is only ever a Failure.
        """
        with self._lock:
            if not name:
                key = self._keys.get(hash)
                if key is None:
                    return _fail(FailureKind.invalid_credential, "invalid general key")
                logger.info("Logged in with general key %s", key_prefix(hash))
                return Success(replace(key) if return_full_record else key.perms)

            user = self._users.get(name)
            if user is None:
                return _fail(FailureKind.invalid_credential, "invalid user name")
            if not _same_secret(hash, user.hash):
                return _fail(FailureKind.invalid_credential, f"invalid user {_secret_word(user)}")
            if self.enforce_max_connections and user.connections >= user.max_connection:
                return _fail(
                    FailureKind.connection_limit,
                    f"user {name} reached the maximum of {user.max_connection} connections",
                )

            user.connections += 1
            logger.info("User %s logged in (connections=%d)", name, user.connections)
            return Success(replace(user) if return_full_record else user.perms)

    def logout(self, hash: str, name: str = "") -> AuthResult:
        """Close one session of a named user. Anonymous logout always succeeds."""
        with self._lock:
            if not name:
                logger.info("Logged out with general key %s", key_prefix(hash))
                return Success()

            user = self._users.get(name)
            if user is None:
                return _fail(FailureKind.unknown_user, "invalid user name")
            if not _same_secret(hash, user.hash):
                return _fail(FailureKind.invalid_credential, f"invalid user {_secret_word(user)}")
            if user.connections <= 0:
                user.connections = 0
                return _fail(FailureKind.no_active_connections, "user doesn't have any registered connections")

            user.connections -= 1
            logger.info("User %s logged out (connections=%d)", name, user.connections)
            return Success()

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def add_key(self, key: GeneralKey) -> AuthResult:
        """Insert or overwrite a general key. Overwrite is logged, never rejected."""
        with self._lock:
            if key.hash in self._keys:
                logger.warning("overwriting key %s", key_prefix(key.hash))
            self._keys[key.hash] = replace(key)
            logger.info("General key %s registered (perms=%d)", key_prefix(key.hash), key.perms)
            return Success()

    def add_user(self, user: User) -> AuthResult:
        """Insert or overwrite a user. The stored copy starts with zero connections.

        Overwriting replaces the whole record, so open sessions of the old
        record are no longer counted.
        """
        with self._lock:
            if user.name in self._users:
                logger.warning("overwriting user %s", user.name)
            self._users[user.name] = replace(user, connections=0)
            logger.info("User %s registered (perms=%d)", user.name, user.perms)
            return Success()

    def add_user_or_key(self, record: Credential) -> AuthResult:
        """Insert a user or general key, refusing to overwrite an existing entry."""
        with self._lock:
            if isinstance(record, User):
                if record.name in self._users:
                    return _fail(FailureKind.already_exists, "user already exist")
                return self.add_user(record)
            if isinstance(record, GeneralKey):
                if record.hash in self._keys:
                    return _fail(FailureKind.already_exists, "key already exist")
                return self.add_key(record)
        raise TypeError(f"expected User or GeneralKey, got {type(record).__name__}")

    # ------------------------------------------------------------------
    # Permission changes
    # ------------------------------------------------------------------

    def modify_user_perms(self, name: str, new_perms: int) -> AuthResult:
        """Overwrite a user's perms. The user must exist (UnknownEntryError otherwise)."""
        with self._lock:
            user = self._users.get(name)
            if user is None:
                raise UnknownEntryError(name)
            user.perms = new_perms
            logger.info("User %s perms set to %d", name, new_perms)
            return Success()

    def modify_key_perms(self, hash: str, new_perms: int) -> AuthResult:
        """Overwrite a general key's perms. The key must exist (UnknownEntryError otherwise)."""
        with self._lock:
            key = self._keys.get(hash)
            if key is None:
                raise UnknownEntryError(key_prefix(hash))
            key.perms = new_perms
            logger.info("General key %s perms set to %d", key_prefix(hash), new_perms)
            return Success()

    def modify_perms(self, record: Credential, new_perms: int) -> AuthResult:
        """Guarded permission change.

        For a GeneralKey the hash is the lookup key, so existence is the only
        check. For a User the presented hash must also match the stored one.
        """
        with self._lock:
            if isinstance(record, GeneralKey):
                if record.hash not in self._keys:
                    return _fail(FailureKind.not_found, "key does not exist")
                return self.modify_key_perms(record.hash, new_perms)
            if isinstance(record, User):
                user = self._users.get(record.name)
                if user is None:
                    return _fail(FailureKind.not_found, "user does not exist")
                if not _same_secret(record.hash, user.hash):
                    return _fail(FailureKind.invalid_credential, "invalid hash")
                return self.modify_user_perms(record.name, new_perms)
        raise TypeError(f"expected User or GeneralKey, got {type(record).__name__}")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def connections(self, name: str) -> int:
        """Current connection count of a user. Raises UnknownEntryError for unknown names."""
        with self._lock:
            user = self._users.get(name)
            if user is None:
                raise UnknownEntryError(name)
            return user.connections

    def get_user(self, name: str) -> User | None:
        with self._lock:
            user = self._users.get(name)
            return replace(user) if user is not None else None

    def get_key(self, hash: str) -> GeneralKey | None:
        with self._lock:
            key = self._keys.get(hash)
            return replace(key) if key is not None else None

    def list_users(self) -> list[User]:
        """Snapshots of all users ordered by name."""
        with self._lock:
            return [replace(self._users[name]) for name in sorted(self._users)]

    def list_keys(self) -> list[GeneralKey]:
        """Snapshots of all general keys in insertion order."""
        with self._lock:
            return [replace(k) for k in self._keys.values()]


def load_registry(path: str | Path | None = None, settings: Settings | None = None) -> Registry:
    """Read the registry snapshot named by settings (or path) and build a Registry.

    Raises FileNotFoundError / pydantic.ValidationError from load_registry_config().
    """
    settings = settings or get_settings()
    config = load_registry_config(path or settings.registry_config_path)
    return Registry.from_config(config, enforce_max_connections=settings.enforce_max_connections)
