"""Command-line interface for the user service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    venv_dir = Path(__file__).resolve().parent / ".venv"
    if not venv_dir.is_dir():
        return

    script = str(Path(__file__).resolve())
    for candidate in (venv_dir / "bin" / "python", venv_dir / "Scripts" / "python.exe"):
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


if __name__ == "__main__":
    _bootstrap_virtualenv()

from userservice.config import Settings, load_settings
from userservice.errors import UserServiceError
from userservice.logs import configure_logging

logger = logging.getLogger("userservice.main")

_KNOWN_COMMANDS = {"serve", "init-db", "create-user", "list-users"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERSERVICE_CONFIG or config/userservice.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the API (default: 8080)")

    subparsers.add_parser("init-db", help="Create the database tables")

    create_parser = subparsers.add_parser("create-user", help="Create a user")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address")

    list_parser = subparsers.add_parser("list-users", help="List users")
    list_parser.add_argument("--limit", type=int, default=10, help="Maximum number of users to show")
    list_parser.add_argument("--offset", type=int, default=0, help="Number of users to skip")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    # Global options come first; the sub-command defaults to ``serve``.
    index = 0
    while index < len(args_list):
        if args_list[index] == "--config":
            index += 2
        elif args_list[index].startswith("--config="):
            index += 1
        else:
            break
    rest = args_list[index:]
    if not rest:
        args_list = [*args_list, "serve"]
    elif rest[0] not in _KNOWN_COMMANDS and rest[0] not in ("-h", "--help"):
        if not any(flag in rest for flag in ("-h", "--help")):
            args_list = [*args_list[:index], "serve", *rest]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    return load_settings(Path(config).expanduser() if config else None)


def _serve(settings: Settings, *, host: str, port: int) -> None:
    import uvicorn

    from userservice.application import create_application

    app = create_application(settings)
    logger.info("Starting user service API on http://%s:%s", host, port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    finally:
        app.state.database.close()


def _init_db(settings: Settings) -> None:
    from userservice.application import build_database

    database = build_database(settings)
    database.close()
    print(f"Database initialisation complete ({database.location}).")


def _create_user(settings: Settings, name: str, email: str) -> int:
    from userservice.application import build_database, build_service

    database = build_database(settings)
    try:
        user = build_service(settings, database).create_user(name, email)
    except UserServiceError as exc:
        print(f"Failed to create user: {exc.user_message}", file=sys.stderr)
        return 1
    finally:
        database.close()

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


def _list_users(settings: Settings, *, limit: int, offset: int) -> None:
    from userservice.application import build_database, build_service

    database = build_database(settings)
    try:
        page = build_service(settings, database).list_users(limit, offset)
    finally:
        database.close()

    if not page.users:
        print("No users are currently registered.")
        return

    print(f"{len(page.users)} of {page.total} user(s):")
    print(f"{'ID':<36}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 110)
    for user in page.users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:<36}  {user.name:<24}  {user.email:<32}  {created}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = _load_settings(args.config)
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        _init_db(settings)
    elif args.command == "create-user":
        return _create_user(settings, args.name, args.email)
    elif args.command == "list-users":
        _list_users(settings, limit=args.limit, offset=args.offset)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
