#!/usr/bin/env python3
"""
Tigra auth -- operator command line.

Usage:
  python main.py create-admin --email admin@example.com --password 's3cret-pass'
  python main.py create-admin --email admin@example.com --password 's3cret-pass' --name "Ops"
  python main.py purge-tokens

Reads the same environment / .env settings as the API (DATABASE_URL,
SECRET_KEY, BCRYPT_ROUNDS, REFRESH_TOKEN_RETENTION_SECONDS, ...).

create-admin creates the account, or promotes an existing one to ADMIN
without touching its password.
purge-tokens deletes refresh token records that expired more than the
retention period ago. The API does this on a timer too; the command is for
deployments that run it from cron instead.
"""

import argparse
import sys
from datetime import timedelta
from typing import Optional

from pydantic import ValidationError as RequestInvalid

from api.models import RegisterRequest
from auth.credentials import CredentialValidator
from auth.store import RefreshTokenStore, UserStore, create_store_engine
from core import clock
from core.config import get_settings
from core.errors import AppError


def _create_admin(args: argparse.Namespace) -> int:
    try:
        body = RegisterRequest(email=args.email, password=args.password, name=args.name)
    except RequestInvalid as e:
        for err in e.errors():
            print(f"  [!] {'.'.join(str(p) for p in err['loc'])}: {err['msg']}")
        return 2

    settings = get_settings()
    engine = create_store_engine(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        validator = CredentialValidator(UserStore(engine))
        try:
            user = validator.ensure_admin(body.email, body.password, name=body.name)
        except AppError as e:
            print(f"  [!] {e.message}")
            return 1
    finally:
        engine.dispose()
    print(f"Admin ready: {user.email} (id {user.id})")
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = create_store_engine(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        cutoff = clock.utcnow() - timedelta(seconds=settings.refresh_token_retention_seconds)
        removed = RefreshTokenStore(engine).purge_expired(cutoff)
    finally:
        engine.dispose()
    print(f"Purged {removed} refresh token record(s) expired before {clock.to_iso(cutoff)}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tigra-auth",
        description="Operator commands for the Tigra auth service.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    create_admin = subparsers.add_parser("create-admin", help="Create or promote an administrator account")
    create_admin.add_argument("--email", required=True, help="Admin email address")
    create_admin.add_argument("--password", required=True, help="Password for a newly created account (8+ chars)")
    create_admin.add_argument("--name", default=None, help="Display name (optional)")
    create_admin.set_defaults(handler=_create_admin)

    purge = subparsers.add_parser("purge-tokens", help="Delete long-dead refresh token records")
    purge.set_defaults(handler=_purge_tokens)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
