#!/usr/bin/env python3
"""
keyward -- In-memory user / general-key registry.

Loads the startup snapshot (users and general keys) and runs one operation
against a fresh registry. State lives only as long as the process, so this
is a tool for checking a config file, not a session manager.

Usage:
  python main.py summary
  python main.py --config config.json summary
  python main.py login --name admin --hash H1
  python main.py login --hash K1
  python main.py login --name admin --hash H1 --full --json

Environment variables:
  REGISTRY_CONFIG_PATH     Default config file (default: config.json).
  ENFORCE_MAX_CONNECTIONS  Reject logins past a user's maxConnection.
  LOG_LEVEL                DEBUG, INFO, WARNING, ERROR, CRITICAL.
"""

import argparse
import json
import logging
from dataclasses import asdict
from typing import Optional

from pydantic import ValidationError

from auth.models import GeneralKey, User
from auth.registry import Registry, key_prefix
from core.config import find_duplicates, get_settings, load_registry_config

logger = logging.getLogger("keyward.cli")

_EXIT_OK = 0
_EXIT_AUTH_FAILED = 1
_EXIT_BAD_CONFIG = 2


def _public_view(record) -> dict:
    """Record as a dict without its credential."""
    data = asdict(record)
    data.pop("hash", None)
    return data


def _print_summary(registry: Registry, duplicate_names: list[str], duplicate_hashes: list[str]) -> None:
    users = registry.list_users()
    keys = registry.list_keys()

    print(f"\nUsers ({len(users)})")
    print("─" * 40)
    for user in users:
        secret = "key" if user.use_auth_key else "password"
        print(f"  {user.name:<20} perms={user.perms:<4} max_connection={user.max_connection:<3} {secret}")

    print(f"\nGeneral keys ({len(keys)})")
    print("─" * 40)
    for key in keys:
        print(f"  {key_prefix(key.hash)}  perms={key.perms}")

    for name in duplicate_names:
        print(f"\n  [!] user '{name}' is defined more than once; the last entry wins.")
    for key_hash in duplicate_hashes:
        print(f"\n  [!] general key {key_prefix(key_hash)} is defined more than once; the last entry wins.")
    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Inspect a user / general-key registry snapshot and try logins against it.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py summary
  python main.py --config ./config.json summary
  python main.py login --name admin --hash H1
  python main.py login --hash K1 --json
        """,
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Registry snapshot (JSON). Defaults to REGISTRY_CONFIG_PATH or config.json",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    subparsers.add_parser("summary", help="List users and general keys (credentials are not shown)")

    login_parser = subparsers.add_parser("login", help="Attempt one login against a fresh registry")
    login_parser.add_argument("--hash", required=True, help="Password hash or key to present")
    login_parser.add_argument(
        "--name",
        default="",
        help="User name. Omit to authenticate with a general key",
    )
    login_parser.add_argument(
        "--full",
        action="store_true",
        help="Print the whole record instead of just the permission level",
    )
    login_parser.add_argument("--json", action="store_true", help="Output structured JSON")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return _EXIT_OK

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config_path = args.config or settings.registry_config_path
    try:
        config = load_registry_config(config_path)
    except FileNotFoundError as e:
        print(f"  [!] {e}")
        return _EXIT_BAD_CONFIG
    except (OSError, UnicodeDecodeError) as e:
        print(f"  [!] Could not read registry config '{config_path}': {e}")
        return _EXIT_BAD_CONFIG
    except ValidationError as e:
        print(f"  [!] Registry config '{config_path}' is invalid ({e.error_count()} error(s)).")
        logger.debug("Config validation failed", exc_info=True)
        return _EXIT_BAD_CONFIG

    duplicate_names, duplicate_hashes = find_duplicates(config)
    for name in duplicate_names:
        logger.warning("Duplicate user %s in %s; last entry wins", name, config_path)
    for key_hash in duplicate_hashes:
        logger.warning("Duplicate general key %s in %s; last entry wins", key_prefix(key_hash), config_path)

    registry = Registry.from_config(config, enforce_max_connections=settings.enforce_max_connections)

    if args.command == "summary":
        _print_summary(registry, duplicate_names, duplicate_hashes)
        return _EXIT_OK

    # login
    result = registry.login(args.hash, args.name, return_full_record=args.full)
    if not result.ok:
        if args.json:
            print(json.dumps({"ok": False, "error": {"code": result.kind.value, "message": result.message}}))
        else:
            print(f"  [!] Login failed ({result.kind.value}): {result.message}")
        return _EXIT_AUTH_FAILED

    value = result.value
    if isinstance(value, (User, GeneralKey)):
        value = _public_view(value)
    if args.json:
        print(json.dumps({"ok": True, "value": value}, indent=2))
    elif isinstance(value, dict):
        for field_name, field_value in value.items():
            print(f"  {field_name}: {field_value}")
    else:
        print(f"  perms: {value}")
    return _EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
