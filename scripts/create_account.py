"""
Seed an Identity Authority account. For development and tests only.

    python -m scripts.create_account alice alice@example.com \
        --password s3cret --role administrator
"""

from __future__ import annotations

import argparse
import getpass
import sys

from app.clients import SQLiteAccountDirectory
from app.core.config import get_settings
from app.core.errors import DuplicateAccountError
from app.services import TokenHasherService

EXIT_OK = 0
EXIT_DUPLICATE = 4


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a development account.")
    parser.add_argument("username")
    parser.add_argument("email")
    parser.add_argument("--display-name", default="")
    parser.add_argument(
        "--role",
        dest="roles",
        action="append",
        default=[],
        help="Role to grant; repeat for several. Auto-sync needs an allow-listed role.",
    )
    parser.add_argument("--password", help="Prompted for when omitted.")
    parser.add_argument(
        "--db-path",
        help="Authority database (default: AUTHORITY_DB_PATH).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    password = args.password or getpass.getpass("Password: ")
    hasher = TokenHasherService(rounds=settings.sync.token_hash_rounds)
    directory = SQLiteAccountDirectory(args.db_path or settings.storage.authority_db_path)

    try:
        account = directory.create_account(
            username=args.username,
            email=args.email,
            display_name=args.display_name or args.username,
            roles=args.roles,
            password_hash=hasher.hash(password),
        )
    except DuplicateAccountError:
        print(f"Account {args.username!r} already exists.", file=sys.stderr)
        return EXIT_DUPLICATE

    print(f"Created account {account.username} ({account.id}) roles={account.roles}")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
