#!/usr/bin/env python3
"""
ServiceDesk -- operator command line.

Usage:
  python main.py init-db
  python main.py add-user ada@example.com agent --display-name "Ada Lovelace"
  python main.py list-users
  python main.py serve --port 8000

Environment variables (see core/config.py):
  DATABASE_URL         Database to operate on (default: servicedesk.db next to this file)
  AUTO_CREATE_SCHEMA   Create missing tables on first use (default: true)
"""

import argparse
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.store import UserStore
from cmdb.store import CMDBStore
from core.config import get_settings
from core.errors import ValidationError
from core.validators import validate_user_create


def _init_db(args: argparse.Namespace) -> int:
    """Create every table and seed the CI type catalog and default assignment groups."""
    CMDBStore(create=True).close()
    UserStore(create=True).close()
    print(f"Schema ready at {get_settings().database_url}")
    return 0


def _add_user(args: argparse.Namespace) -> int:
    try:
        fields = validate_user_create(
            {"email": args.email, "displayName": args.display_name or args.email, "role": args.role}
        )
    except ValidationError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1

    store = UserStore()
    try:
        if store.email_exists(fields["email"]):
            print(f"  [!] A user with email {fields['email']} already exists.", file=sys.stderr)
            return 1
        user = User(email=fields["email"], display_name=fields["displayName"], role=Role(fields["role"]))
        user_id, _ = store.create_user(user, created_by="cli")
    except IntegrityError:
        print(f"  [!] A user with email {fields['email']} already exists.", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"  Added {user.email} as {user.role.value} (id {user_id})")
    return 0


def _list_users(args: argparse.Namespace) -> int:
    store = UserStore()
    try:
        users = store.list_users()
    finally:
        store.close()

    if not users:
        print("No active users.")
        return 0
    width = max(len(u.email) for u in users)
    for u in users:
        print(f"  {u.email:<{width}}  {u.role.value:<6}  {u.display_name}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="servicedesk",
        description="Operator tools for the ServiceDesk CMDB and user directory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py add-user john@example.com admin --display-name "John Smith"
  DATABASE_URL=sqlite:///./local.db python main.py list-users
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_db = sub.add_parser("init-db", help="Create tables and seed reference data")
    init_db.set_defaults(handler=_init_db)

    add_user = sub.add_parser("add-user", help="Add a user to the directory")
    add_user.add_argument("email", help="User email address")
    add_user.add_argument("role", metavar="ROLE", help="user, agent, or admin")
    add_user.add_argument(
        "--display-name",
        metavar="NAME",
        default=None,
        help="Display name (default: the email address)",
    )
    add_user.set_defaults(handler=_add_user)

    list_users = sub.add_parser("list-users", help="List active users and their roles")
    list_users.set_defaults(handler=_list_users)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve.set_defaults(handler=_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 1
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
