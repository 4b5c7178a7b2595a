"""
core/config.py -- Centralized configuration via pydantic-settings.

Two kinds of configuration live here:

  Settings (BaseSettings): process settings read from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. enforce_max_connections -> ENFORCE_MAX_CONNECTIONS).

  RegistryConfig (BaseModel): the static snapshot of users and general keys
      the registry is built from at startup. Loaded from a JSON file with the
      shape {"users": [...], "general_keys": [...]}. The older layout that
      nests both lists under an "um" key is accepted as well.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  @model_validator(mode="before"): unwraps the legacy "um" envelope before
      field validation runs, so the rest of the model only sees one shape.

Layer rule: core/ is the kernel. This module may not import from auth/ or
main.py.
"""

import logging
from collections import Counter
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    """Process settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to the JSON snapshot of users and general keys.
    registry_config_path: str = "config.json"

    # maxConnection is informational unless this is switched on. When on,
    # login is rejected once a user's connection count reaches the cap.
    enforce_max_connections: bool = False

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


# ---------------------------------------------------------------------------
# Registry snapshot
# ---------------------------------------------------------------------------


class UserConfig(BaseModel):
    """One user entry. Accepts the camelCase keys written by older tooling."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    hash: str = Field(min_length=1)
    perms: int
    max_connection: int = Field(default=1, ge=0, alias="maxConnection")
    use_auth_key: bool = Field(default=False, alias="useAuthKey")


class GeneralKeyConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hash: str = Field(min_length=1)
    perms: int


class RegistryConfig(BaseModel):
    """Startup snapshot of every user and general key.

    Duplicate names or hashes are not rejected here: the registry applies
    last-write-wins. Use find_duplicates() to report them.
    """

    model_config = ConfigDict(extra="ignore")

    users: list[UserConfig] = Field(default_factory=list)
    general_keys: list[GeneralKeyConfig] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def unwrap_legacy_envelope(cls, data: Any) -> Any:
        if isinstance(data, dict) and "um" in data and isinstance(data["um"], dict):
            return data["um"]
        return data


def load_registry_config(path: str | Path) -> RegistryConfig:
    """Read and validate a registry snapshot from a JSON file.

    Resolves symlinks and verifies the path is a regular file before reading.
    Raises FileNotFoundError if it is not, OSError / UnicodeDecodeError if it
    cannot be read as UTF-8; JSON syntax and shape errors surface as
    pydantic.ValidationError.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise FileNotFoundError(f"Registry config '{path}' is not a readable file.")
    config = RegistryConfig.model_validate_json(file_path.read_text(encoding="utf-8"))
    logger.debug(
        "Loaded registry config from %s (%d users, %d general keys)",
        file_path,
        len(config.users),
        len(config.general_keys),
    )
    return config


def find_duplicates(config: RegistryConfig) -> tuple[list[str], list[str]]:
    """Return (user names, key hashes) that appear more than once, in first-seen order."""
    names = Counter(u.name for u in config.users)
    hashes = Counter(k.hash for k in config.general_keys)
    return (
        [name for name, count in names.items() if count > 1],
        [key_hash for key_hash, count in hashes.items() if count > 1],
    )
