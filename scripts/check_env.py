"""Pre-flight check for the sync bridge's environment configuration.

Two jobs:

1. Load ``AppSettings`` from the given ``.env`` file and refuse to pass when
   the shared secret is missing, since every server-to-server sync call fails
   closed without it.
2. Record and verify a checksum for the ``.env`` file so edits made outside a
   deploy (a stray ``git pull``, a hand-edited secret) are noticed.

Example usages::

    python -m scripts.check_env record --env-file /srv/identity-sync/.env \
        --hash-file /srv/identity-sync/.env.sha256

    python -m scripts.check_env verify --env-file /srv/identity-sync/.env \
        --hash-file /srv/identity-sync/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from app.core.config import AppSettings, _load_env_file
from app.core.errors import ConfigurationError

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _validate_settings(env_file: Path) -> AppSettings:
    """Load settings from ``env_file`` and require the shared sync secret."""
    _load_env_file(str(env_file))
    settings = AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]
    if not settings.sync.shared_secret:
        raise ConfigurationError("SYNC_SHARED_SECRET is not set.")
    return settings


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Checksum baseline {hash_file} is missing; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "Check who changed the sync configuration before restarting.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate sync bridge settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_file(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )

    for name, help_text, hash_help in (
        ("record", "Validate settings and store the checksum baseline.",
         "Where to write the checksum baseline."),
        ("verify", "Validate settings and compare against the baseline.",
         "Previously recorded checksum baseline."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        add_env_file(subparser)
        subparser.add_argument("--hash-file", required=True, type=Path, help=hash_help)

    add_env_file(subparsers.add_parser("check", help="Validate settings only."))
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        _validate_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except ConfigurationError as exc:
        print(f"Configuration incomplete: {exc.message}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except OSError as exc:
        print(f"Could not read {env_file}: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: EXIT_OK,
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
