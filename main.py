#!/usr/bin/env python3
"""
Tokenward -- operator CLI for accounts, roles, and sessions.

The HTTP API (uvicorn asgi:app) handles login, refresh, and logout. This CLI
covers the administrative side that has no public endpoint: creating users,
granting and revoking roles, suspending accounts, and cleaning up sessions.

Usage:
  python main.py create-user alice@example.com --role member --verified
  python main.py grant-role alice@example.com administrator
  python main.py revoke-role alice@example.com administrator
  python main.py set-status alice@example.com suspended
  python main.py delete-user alice@example.com
  python main.py revoke-sessions alice@example.com
  python main.py login-history --email alice@example.com --failures
  python main.py purge-sessions

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. Same key as the API server.
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite:///tokenward.db)
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import AccountStatus, RoleType, User
from auth.passwords import hash_password
from auth.services import AuthServices, build_services
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _read_password(provided: Optional[str]) -> Optional[str]:
    """Return the password from --password or an interactive prompt.

    Prompts twice when interactive. Returns None if the entries differ or
    the password is too short.
    """
    if provided is not None:
        password = provided
    else:
        password = getpass.getpass("  Password: ")
        confirm = getpass.getpass("  Confirm password: ")
        if password != confirm:
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    return password


def _require_user(services: AuthServices, email: str) -> Optional[User]:
    user = services.accounts.get_user_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
    return user


# ---------------------------------------------------------------------------
# Commands. Each returns a process exit code.
# ---------------------------------------------------------------------------


def cmd_create_user(services: AuthServices, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if password is None:
        return 1
    user = User(
        email=args.email,
        password_hash=hash_password(password),
        email_verified=args.verified,
    )
    try:
        user_id = services.accounts.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    services.accounts.grant_role(user_id, RoleType(args.role))
    print(f"  Created {args.email} ({user_id}) with role {args.role}.")
    if not args.verified:
        print("  Email is not verified; login stays blocked until it is (--verified).")
    return 0


def cmd_grant_role(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    services.accounts.grant_role(user.id, RoleType(args.role))
    print(f"  {args.email} now holds role {args.role}.")
    return 0


def cmd_revoke_role(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    if not services.accounts.revoke_role(user.id, RoleType(args.role)):
        print(f"  [!] {args.email} does not hold role {args.role}.")
        return 1
    print(f"  Revoked role {args.role} from {args.email}. Existing tokens for it stop working now.")
    return 0


def cmd_set_status(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    services.accounts.update_user(user.id, account_status=AccountStatus(args.status))
    revoked = 0
    if args.status != AccountStatus.active.value:
        revoked = services.sessions.revoke_all_for_user(user.id)
    print(f"  {args.email} is now {args.status}. {revoked} session(s) revoked.")
    return 0


def cmd_verify_email(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    services.accounts.update_user(user.id, email_verified=True)
    print(f"  Marked {args.email} as verified.")
    return 0


def cmd_delete_user(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    services.accounts.soft_delete_user(user.id)
    revoked = services.sessions.revoke_all_for_user(user.id)
    print(f"  Deleted {args.email}. {revoked} session(s) revoked.")
    return 0


def cmd_revoke_sessions(services: AuthServices, args: argparse.Namespace) -> int:
    user = _require_user(services, args.email)
    if user is None:
        return 1
    revoked = services.sessions.revoke_all_for_user(user.id)
    print(f"  Revoked {revoked} session(s) for {args.email}.")
    return 0


def cmd_login_history(services: AuthServices, args: argparse.Namespace) -> int:
    rows = services.audit.history(email=args.email, only_failures=args.failures, limit=args.limit)
    if not rows:
        print("  No login attempts recorded.")
        return 0
    for row in rows:
        outcome = "ok" if row.is_successful else (row.failure_reason.value if row.failure_reason else "failed")
        role = row.role_type.value if row.role_type else "-"
        when = row.created_at.strftime("%Y-%m-%d %H:%M:%S") if row.created_at else "-"
        print(f"  {when}  {row.email_attempted:<32} {role:<14} {outcome:<20} {row.ip or '-'}")
    return 0


def cmd_purge_sessions(services: AuthServices, args: argparse.Namespace) -> int:
    purged = services.sessions.purge_expired()
    print(f"  Purged {purged} expired session(s).")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

_ROLES = [r.value for r in RoleType]
_STATUSES = [s.value for s in AccountStatus]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenward",
        description="Operator commands for Tokenward accounts, roles, and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice@example.com --role member --verified
  python main.py set-status alice@example.com suspended
  python main.py login-history --failures --limit 20
  DATABASE_URL=sqlite:///prod.db python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a user and grant an initial role")
    p.add_argument("email")
    p.add_argument("--role", choices=_ROLES, default=RoleType.member.value)
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.add_argument("--verified", action="store_true", help="Mark the email as verified")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("grant-role", help="Grant a role to an existing user")
    p.add_argument("email")
    p.add_argument("role", choices=_ROLES)
    p.set_defaults(func=cmd_grant_role)

    p = sub.add_parser("revoke-role", help="Revoke a role from a user")
    p.add_argument("email")
    p.add_argument("role", choices=_ROLES)
    p.set_defaults(func=cmd_revoke_role)

    p = sub.add_parser("set-status", help="Change account status; non-active revokes all sessions")
    p.add_argument("email")
    p.add_argument("status", choices=_STATUSES)
    p.set_defaults(func=cmd_set_status)

    p = sub.add_parser("verify-email", help="Mark a user's email as verified")
    p.add_argument("email")
    p.set_defaults(func=cmd_verify_email)

    p = sub.add_parser("delete-user", help="Soft-delete a user and revoke all their sessions")
    p.add_argument("email")
    p.set_defaults(func=cmd_delete_user)

    p = sub.add_parser("revoke-sessions", help="Sign a user out of every device")
    p.add_argument("email")
    p.set_defaults(func=cmd_revoke_sessions)

    p = sub.add_parser("login-history", help="Show recent login attempts")
    p.add_argument("--email")
    p.add_argument("--failures", action="store_true", help="Only show failed attempts")
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_login_history)

    p = sub.add_parser("purge-sessions", help="Delete sessions whose refresh token has expired")
    p.set_defaults(func=cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None, services: Optional[AuthServices] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    owns_services = services is None
    if services is None:
        try:
            services = build_services(get_settings())
        except ValidationError as exc:
            print(f"  [!] Invalid configuration:\n{exc}")
            return 2

    try:
        return args.func(services, args)
    except SQLAlchemyError as exc:
        print(f"  [!] Database error: {exc}")
        return 1
    finally:
        if owns_services:
            services.close()


if __name__ == "__main__":
    sys.exit(main())
