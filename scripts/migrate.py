"""Script to run database migrations."""

import sys

from alembic import command
from alembic.config import Config

USAGE = "Usage: python scripts/migrate.py [upgrade | downgrade <rev> | current | create <message>]"


def run_migrations(revision: str = "head") -> None:
    """Upgrade the database to ``revision``."""
    alembic_cfg = Config("alembic.ini")
    print(f"Upgrading database to {revision}...")
    command.upgrade(alembic_cfg, revision)
    print("✓ Migrations completed successfully!")


def rollback(revision: str) -> None:
    """Downgrade the database to ``revision``."""
    alembic_cfg = Config("alembic.ini")
    print(f"Downgrading database to {revision}...")
    command.downgrade(alembic_cfg, revision)
    print("✓ Downgrade completed successfully!")


def create_migration(message: str) -> None:
    """Create a new autogenerated migration."""
    alembic_cfg = Config("alembic.ini")
    print(f"Creating migration: {message}")
    command.revision(alembic_cfg, message=message, autogenerate=True)
    print("✓ Migration created successfully!")


def main(argv: list[str]) -> int:
    """Dispatch the requested migration command."""
    action = argv[0] if argv else "upgrade"

    try:
        if action == "upgrade":
            run_migrations(argv[1] if len(argv) > 1 else "head")
        elif action == "downgrade" and len(argv) > 1:
            rollback(argv[1])
        elif action == "current":
            command.current(Config("alembic.ini"), verbose=True)
        elif action == "create" and len(argv) > 1:
            create_migration(" ".join(argv[1:]))
        else:
            print(USAGE)
            return 2
    except Exception as e:
        print(f"✗ Migration command failed: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
