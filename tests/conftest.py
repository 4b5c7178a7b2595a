"""
tests/conftest.py -- Shared fixtures for registry tests.

This module provides:
  - registry: the two-entry scenario registry (admin user + one general key)
  - key_user_registry: a user that authenticates with key material
  - config_file: a JSON snapshot written to tmp_path
  - settings cache reset around every test, so env changes never leak
"""

from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path

import pytest

from auth.models import GeneralKey, User
from auth.registry import Registry
from core.config import get_settings

SNAPSHOT = {
    "users": [
        {"name": "admin", "hash": "H1", "perms": 10, "maxConnection": 2, "useAuthKey": False},
        {"name": "ci", "hash": "ssh-ed25519-AAAAC3Nz", "perms": 3, "maxConnection": 1, "useAuthKey": True},
    ],
    "general_keys": [{"hash": "K1", "perms": 5}],
}


@pytest.fixture(autouse=True)
def _reset_settings() -> Generator[None, None, None]:
    """Drop the cached Settings before and after each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def registry() -> Registry:
    """admin/H1 (perms 10, maxConnection 2, password) and general key K1 (perms 5)."""
    return Registry(
        users=[User(name="admin", hash="H1", perms=10, max_connection=2, use_auth_key=False)],
        general_keys=[GeneralKey(hash="K1", perms=5)],
    )


@pytest.fixture
def key_user_registry() -> Registry:
    return Registry(users=[User(name="ci", hash="ssh-ed25519-AAAAC3Nz", perms=3, use_auth_key=True)])


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(SNAPSHOT), encoding="utf-8")
    return path
