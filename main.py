#!/usr/bin/env python3
"""
Arena Identity -- account administration from the command line.

Usage:
  python main.py show alice
  python main.py revoke-sessions alice
  python main.py second-factor alice on
  python main.py second-factor alice off
  python main.py purge-codes
  python main.py --db sqlite:///other.db show alice

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the identity database (default: auth/arena_identity.db)
  SECRET_KEY    Required unless DEBUG=true; see core/config.py.
"""

import argparse
import asyncio
import sys
from typing import Optional

from auth.models import Account
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings


def _print_account(account: Account) -> None:
    print(f"  id:             {account.id}")
    print(f"  username:       {account.username}")
    print(f"  email:          {account.email}")
    print(f"  login:          {'federated' if account.password_hash is None else 'password'}")
    print(f"  second factor:  {'on' if account.second_factor_enabled else 'off'}")
    print(f"  created:        {account.created_at or '-'}")
    print(f"  last seen:      {account.last_seen or 'never'}")


def _require_account(store: CredentialStore, username: str) -> Optional[Account]:
    account = store.find_account_by_username(username)
    if account is None:
        print(f"  [!] No account with username '{username}'.")
    return account


async def _run(args: argparse.Namespace, service: AuthService) -> int:
    store = service.store

    if args.command == "purge-codes":
        removed = await service.codes.purge_expired()
        print(f"  Removed {removed} expired code(s).")
        return 0

    account = _require_account(store, args.username)
    if account is None:
        return 1

    if args.command == "show":
        _print_account(account)
        print(f"  active sessions: {store.count_refresh_tokens(account.id)}")
    elif args.command == "revoke-sessions":
        revoked = await service.logout(account.id)
        print(f"  Revoked {revoked} session(s) for {account.username}.")
    elif args.command == "second-factor":
        updated = await service.set_second_factor(account.id, args.state == "on")
        print(f"  Second factor {'enabled' if updated.second_factor_enabled else 'disabled'} for {account.username}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Arena Identity -- account administration",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        help="Database URL (overrides DATABASE_URL).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Show an account's profile and session count.")
    show.add_argument("username")

    revoke = sub.add_parser("revoke-sessions", help="Revoke every refresh token of an account.")
    revoke.add_argument("username")

    second_factor = sub.add_parser("second-factor", help="Turn the email second factor on or off.")
    second_factor.add_argument("username")
    second_factor.add_argument("state", choices=["on", "off"])

    sub.add_parser("purge-codes", help="Delete expired, unconsumed verification codes.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    store = CredentialStore(args.db or settings.database_url)
    service = AuthService.from_settings(settings, store)
    try:
        return asyncio.run(_run(args, service))
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
