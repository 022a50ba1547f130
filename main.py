#!/usr/bin/env python3
"""
usergate -- operator command line.

Usage:
  python main.py hash-password 'n3w-s3cret'
  python main.py hash-password 'n3w-s3cret' --username admin
  python main.py create-admin admin
  python main.py create-admin admin --password 'n3w-s3cret'

hash-password prints a fresh salt, the PBKDF2 hash and a ready-to-run SQL
UPDATE, for resetting an account directly in the database when nobody can
log in. create-admin bootstraps an ADMIN account in the configured database;
without --password a temporary password is generated, printed once, and the
account must change it at first login.

Environment variables:
  SECRET_KEY    Required unless DEBUG=true (see core/config.py).
  DATABASE_URL  SQLAlchemy URL of the auth database.
"""

import argparse
import sys

from auth.passwords import MIN_ITERATIONS, PasswordHasher, generate_temporary_password
from auth.refresh import RefreshTokenService
from auth.service import AuthenticationService
from auth.store import AuditStore, RefreshTokenStore, UserStore, open_engine
from auth.tokens import TokenSigner
from core.config import get_settings


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def hash_password_command(args: argparse.Namespace) -> int:
    hasher = PasswordHasher(iterations=args.iterations)
    salt = hasher.generate_salt()
    password_hash = hasher.hash(args.password, salt)
    print(f"salt:          {salt}")
    print(f"password_hash: {password_hash}")
    print()
    print(
        "UPDATE users SET "
        f"salt = {_sql_literal(salt)}, "
        f"password_hash = {_sql_literal(password_hash)}, "
        "force_password_reset = 0 "
        f"WHERE username = {_sql_literal(args.username)};"
    )
    return 0


def create_admin_command(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = open_engine(settings.database_url)
    try:
        service = AuthenticationService(
            UserStore(engine),
            AuditStore(engine),
            RefreshTokenService(RefreshTokenStore(engine), validity_days=settings.refresh_token_expire_days),
            TokenSigner(settings.secret_key, expire_seconds=settings.access_token_expire_seconds),
            PasswordHasher(iterations=settings.password_hash_iterations),
            temporary_password_length=settings.temporary_password_length,
        )
        generated = args.password is None
        password = args.password or generate_temporary_password(settings.temporary_password_length)
        if not service.ensure_admin(args.username, password, force_password_reset=generated):
            print(f"  [!] User '{args.username}' already exists; nothing changed.", file=sys.stderr)
            return 1
        if generated:
            print(f"Created admin '{args.username}'. Temporary password (shown once): {password}")
        else:
            print(f"Created admin '{args.username}'.")
        return 0
    finally:
        engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="usergate",
        description="usergate operator tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py hash-password 'n3w-s3cret' --username admin
  python main.py create-admin admin
  DATABASE_URL=sqlite:///prod.db python main.py create-admin root --password 'n3w-s3cret'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    hp = sub.add_parser("hash-password", help="Print salt, hash and an SQL UPDATE for a password")
    hp.add_argument("password", help="Plaintext password to hash")
    hp.add_argument(
        "--username",
        default="admin",
        help="Username used in the generated UPDATE statement (default: admin)",
    )
    hp.add_argument(
        "--iterations",
        type=int,
        default=MIN_ITERATIONS,
        help=f"PBKDF2 iteration count (default and minimum: {MIN_ITERATIONS})",
    )
    hp.set_defaults(func=hash_password_command)

    ca = sub.add_parser("create-admin", help="Create an ADMIN account in the configured database")
    ca.add_argument("username", help="Username of the new admin")
    ca.add_argument(
        "--password",
        default=None,
        help="Initial password; omitted means a temporary one is generated and printed",
    )
    ca.set_defaults(func=create_admin_command)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
