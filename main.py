#!/usr/bin/env python3
"""
authcore -- Operator CLI for the authentication and authorization core.

Works directly against the configured database (DATABASE_URL) with the
configured signing key (SECRET_KEY). Useful for bootstrapping the first
admin, forcing a logout, and scheduled revocation cleanup.

Usage:
  python main.py register alice --role admin --scope read:users
  python main.py login alice
  python main.py verify <token>
  python main.py revoke <token>
  python main.py purge

Passwords are read from the terminal without echo, or from stdin with
--password-stdin (for scripts). They are never accepted as arguments,
which would leave them in shell history and the process list.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.service import Authenticator
from core.errors import AuthError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.cli")


def _read_password(from_stdin: bool, confirm: bool = False) -> str:
    """Read a password from stdin (first line) or interactively without echo."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Confirm password: ") != password:
        raise SystemExit("  [!] Passwords do not match.")
    return password


def _claims_json(authn: Authenticator, token: str) -> str:
    claims = authn.tokens.verify(token)
    return json.dumps(
        {
            "subject": claims.subject,
            "kind": claims.kind.value,
            "roles": list(claims.roles),
            "scopes": list(claims.scopes),
            "issued_at": claims.issued_at.isoformat(),
            "expires_at": claims.expires_at.isoformat(),
            "token_id": claims.token_id,
        },
        indent=2,
    )


def run(args: argparse.Namespace, authn: Authenticator) -> int:
    """Execute one parsed command. Returns the process exit code."""
    try:
        if args.command == "register":
            password = _read_password(args.password_stdin, confirm=not args.password_stdin)
            record = authn.register(args.identity, password, roles=args.role, scopes=args.scope)
            print(f"  Registered {record.identity_key} ({record.algorithm}).")
        elif args.command == "login":
            password = _read_password(args.password_stdin)
            pair = authn.login(args.identity, password)
            print(json.dumps(pair.as_dict(), indent=2))
        elif args.command == "verify":
            print(_claims_json(authn, args.token))
        elif args.command == "revoke":
            authn.revoke(args.token)
            print("  Token revoked.")
        elif args.command == "purge":
            removed = authn.purge_revocations()
            print(f"  Purged {removed} expired revocation(s).")
    except AuthError as exc:
        print(f"  [!] {exc.code}: {exc.message}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Operator commands for the authcore credential and token store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register alice --role admin --scope read:users --scope write:posts
  echo "$PASSWORD" | python main.py login alice --password-stdin
  python main.py verify eyJhbGciOi...
  python main.py revoke eyJhbGciOi...
  python main.py purge
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Create a credential and its grants")
    register.add_argument("identity", help="Identity key (username)")
    register.add_argument("--role", action="append", default=[], help="Role to grant (repeatable)")
    register.add_argument("--scope", action="append", default=[], help="Scope to grant (repeatable)")
    register.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    login = sub.add_parser("login", help="Log in and print an access/refresh token pair")
    login.add_argument("identity", help="Identity key (username)")
    login.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    verify = sub.add_parser("verify", help="Verify a token and print its claims")
    verify.add_argument("token")

    revoke = sub.add_parser("revoke", help="Revoke a token (logout / forced invalidation)")
    revoke.add_argument("token")

    sub.add_parser("purge", help="Delete revocation entries for tokens that have expired")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    authn = Authenticator.from_settings()
    try:
        return run(args, authn)
    finally:
        authn.close()


if __name__ == "__main__":
    sys.exit(main())
