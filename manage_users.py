from __future__ import annotations

import argparse

from dotenv import load_dotenv

from trafficreport import problem_store, user_store
from trafficreport.db import Database
from trafficreport.settings import Settings


def print_user(user: dict[str, object]) -> None:
    print(f"{user['id']:>3} {user['email']:<32} {user.get('name') or '-'}")


def open_database() -> Database:
    db = Database.from_settings(Settings.from_env())
    db.open()
    user_store.init_db(db)
    problem_store.init_db(db)
    return db


def cmd_list(ns: argparse.Namespace, db: Database) -> None:
    users = user_store.list_users(db)
    if not users:
        print("(no users)")
        return
    for user in users:
        print_user(user)


def cmd_add(ns: argparse.Namespace, db: Database) -> None:
    try:
        record = user_store.create_user(db, email=ns.email, password=ns.password, name=ns.name)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    print("Created user:")
    print_user(record)


def cmd_set_password(ns: argparse.Namespace, db: Database) -> None:
    user = user_store.get_user_by_email(db, ns.email)
    if not user:
        raise SystemExit(f"User '{ns.email}' not found")
    user_store.set_password(db, user["id"], ns.password)
    print(f"Password updated for '{user['email']}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage traffic report accounts")
    sub = parser.add_subparsers(dest="command", required=True)

    p_add = sub.add_parser("add", help="Create a new user")
    p_add.add_argument("email")
    p_add.add_argument("password")
    p_add.add_argument("--name")
    p_add.set_defaults(func=cmd_add)

    p_list = sub.add_parser("list", help="List users")
    p_list.set_defaults(func=cmd_list)

    p_pw = sub.add_parser("set-password", help="Reset a user password")
    p_pw.add_argument("email")
    p_pw.add_argument("password")
    p_pw.set_defaults(func=cmd_set_password)

    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    db = open_database()
    try:
        args.func(args, db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
