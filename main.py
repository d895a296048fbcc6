#!/usr/bin/env python3
"""
CropCase -- operator command line.

Usage:
  python main.py seed-crops
  python main.py create-user farmer@example.in --password s3cret! --name "Asha Patel"
  python main.py create-user admin@example.in --role ADMIN
  python main.py set-role farmer@example.in ADMIN
  python main.py purge-sessions

All commands talk to the database named by DATABASE_URL (see core/config.py).
create-user prompts for the password when --password is omitted.
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from api.models import SignupRequest
from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import SessionStore, UserStore
from core.config import get_settings
from core.errors import AppError
from plans.catalog import default_crops
from plans.store import PlanStore


def _seed_crops(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = PlanStore(settings.database_url, settings.db_timeout_seconds)
    try:
        inserted = store.seed_crops(default_crops())
    finally:
        store.close()
    print(f"Seeded {inserted} crop(s) ({len(default_crops()) - inserted} already present).")
    return 0


def _create_user(args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    try:
        # Same rules as POST /auth/signup.
        checked = SignupRequest(email=args.email, password=password, name=args.name)
    except PydanticValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(p) for p in err["loc"]) or "input"
            print(f"  [!] {field}: {err['msg'].removeprefix('Value error, ')}", file=sys.stderr)
        return 2

    settings = get_settings()
    store = UserStore(settings.database_url, settings.db_timeout_seconds)
    try:
        user = User(
            email=checked.email,
            name=checked.name,
            role=Role(args.role).value,
            hashed_password=hash_password(checked.password),
        )
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email {checked.email} already exists.", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Created {user.role} user {checked.email} (id={user_id}).")
    return 0


def _set_role(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(settings.database_url, settings.db_timeout_seconds)
    try:
        user = store.get_by_email(args.email.lower())
        if user is None:
            print(f"  [!] No user with email {args.email}.", file=sys.stderr)
            return 1
        store.update_role(user.id, Role(args.role))
    finally:
        store.close()
    print(f"{user.email} is now {args.role}.")
    return 0


def _purge_sessions(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = SessionStore(settings.database_url, settings.db_timeout_seconds)
    try:
        removed = store.delete_expired()
    finally:
        store.close()
    print(f"Removed {removed} expired refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cropcase",
        description="CropCase operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-crops
  python main.py create-user farmer@example.in --name "Asha Patel"
  python main.py create-user admin@example.in --role ADMIN
  DATABASE_URL=postgresql://... python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed-crops", help="Insert the default crop catalog (skips existing names)")
    seed.set_defaults(handler=_seed_crops)

    create = sub.add_parser("create-user", help="Create a local account")
    create.add_argument("email", metavar="EMAIL", help="Login email (stored lower-case)")
    create.add_argument("--password", default=None, help="Password; prompted for when omitted")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.USER.value,
        help="Account role (default: USER)",
    )
    create.add_argument("--name", default=None, help="Display name")
    create.set_defaults(handler=_create_user)

    role = sub.add_parser("set-role", help="Change the role of an existing account")
    role.add_argument("email", metavar="EMAIL")
    role.add_argument("role", metavar="ROLE", choices=[r.value for r in Role])
    role.set_defaults(handler=_set_role)

    purge = sub.add_parser("purge-sessions", help="Delete expired refresh tokens")
    purge.set_defaults(handler=_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1
    try:
        return args.handler(args)
    except AppError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
