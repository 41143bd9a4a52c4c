#!/usr/bin/env python3
"""
Gatekeep -- administrative command line.

Usage:
  python main.py create-user alice alice@example.com
  python main.py create-user root root@example.com --role admin --role mod
  python main.py purge-tokens

create-user prompts for the password (never pass it on the command line;
it would end up in shell history).

purge-tokens deletes refresh-token rows whose expiry has passed. Expired
tokens are already rejected at rotation time; this only reclaims space and
is safe to run from cron.

Configuration comes from the same environment variables / .env file as the
API (see core/config.py).
"""

import argparse
import getpass
import sys
from datetime import datetime, timezone

from auth import build_auth
from auth.errors import AuthError
from auth.passwords import MAX_PASSWORD_BYTES, password_fits
from auth.store import SqlCredentialStore
from core.config import get_settings


def _create_user(args: argparse.Namespace, store: SqlCredentialStore) -> int:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return 1
    if not 6 <= len(password) <= 40 or not password_fits(password):
        print(f"  [!] Password must be 6-40 characters and at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    service = build_auth(get_settings(), store).service
    try:
        user = service.signup(args.username, args.email, password, args.role)
    except AuthError as e:
        print(f"  [!] {e}")
        return 1
    roles = ", ".join(sorted(r.name for r in user.roles))
    print(f"  Created user {user.username!r} (id={user.id}, roles={roles})")
    return 0


def _purge_tokens(args: argparse.Namespace, store: SqlCredentialStore) -> int:
    try:
        removed = store.purge_expired_refresh_tokens(datetime.now(timezone.utc))
    except AuthError as e:
        print(f"  [!] {e}")
        return 1
    print(f"  Removed {removed} expired refresh token(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatekeep",
        description="Gatekeep administrative commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create an account (prompts for password)")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument(
        "--role",
        action="append",
        default=[],
        metavar="ROLE",
        help="Role to grant (user, mod, admin). Repeatable. Default: user",
    )
    create.set_defaults(handler=_create_user)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens")
    purge.set_defaults(handler=_purge_tokens)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    store = SqlCredentialStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        return args.handler(args, store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
