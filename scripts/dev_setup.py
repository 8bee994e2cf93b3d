"""Write a local .env for Storyforge and create the development database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storyforge import create_app
from storyforge.extensions import db

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings Storyforge reads at start-up "
            "and initialize the SQLite database."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="storyforge:create_app",
        help="Entry point used by the flask CLI (default: storyforge:create_app)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help="Secret key for Flask sessions. If omitted, the current value in .env is preserved.",
    )
    parser.add_argument("--openai-api-key", help="API key for the OpenAI backend (optional).")
    parser.add_argument("--openai-model", help="OpenAI model name, e.g. gpt-4o-mini (optional).")
    parser.add_argument(
        "--model-path",
        help="Local Hugging Face model directory used when no API key is set (optional).",
    )
    parser.add_argument(
        "--database-url",
        help="Override DATABASE_URL (optional).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    optional_updates = {
        "SECRET_KEY": args.secret_key,
        "OPENAI_API_KEY": args.openai_api_key,
        "OPENAI_MODEL": args.openai_model,
        "TEXT_GENERATOR_MODEL_PATH": args.model_path,
        "DATABASE_URL": args.database_url,
    }
    env_data["FLASK_APP"] = args.flask_app
    env_data.update({key: value for key, value in optional_updates.items() if value})
    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
    print(f"Database initialized ({app.config['SQLALCHEMY_DATABASE_URI']}).")


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key in {"SECRET_KEY", "OPENAI_API_KEY"} and value:
            value = value[:4] + "…"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
