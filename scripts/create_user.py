import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userservice.application import build_database, build_service
from userservice.config import load_settings
from userservice.errors import UserServiceError
from userservice.logs import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user directly in the user service database")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML configuration (defaults to USERSERVICE_CONFIG or config/userservice.yaml)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = load_settings(Path(args.config_path) if args.config_path else None)
    configure_logging(settings.log_level, settings.log_format)

    database = build_database(settings)
    try:
        user = build_service(settings, database).create_user(args.name, args.email)
    except UserServiceError as exc:
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1
    finally:
        database.close()

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
