"""
auth/models.py -- Domain dataclasses for registry entries and operation results.

Pattern: Data class (pure data container, zero logic). The registry owns the
state transitions; these classes only describe shape.

Credential is the sum type over the two entry kinds. Callers dispatch on the
concrete class (isinstance), never on which attributes happen to be present.

Layer rule: no imports from core/ or main.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union


@dataclass
class User:
    """A named identity with its own credential and connection counter.

    hash is opaque: either a password hash or raw key material, compared
    byte-for-byte. use_auth_key only changes the wording of failure messages.

    connections is owned by the registry. Every registration path stores a
    copy with the counter reset to 0, so the value passed in is ignored.
    """

    name: str
    hash: str
    perms: int
    max_connection: int = 1
    use_auth_key: bool = False
    connections: int = 0


@dataclass
class GeneralKey:
    """A bearer credential with no identity attached.

    Anyone presenting hash gets perms. There is no per-key session and no
    connection counter.
    """

    hash: str
    perms: int


Credential = Union[User, GeneralKey]


class FailureKind(str, Enum):
    invalid_credential = "invalid_credential"
    unknown_user = "unknown_user"
    not_found = "not_found"
    already_exists = "already_exists"
    no_active_connections = "no_active_connections"
    connection_limit = "connection_limit"  # only with ENFORCE_MAX_CONNECTIONS


T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful outcome. value is the login payload, None for everything else."""

    value: Optional[T] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Rejected outcome. Never raised; registry operations return it."""

    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False


AuthResult = Union[Success[T], Failure]
