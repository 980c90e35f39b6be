"""Schema management: Alembic upgrades for the MyEvent database."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .config import settings
from .database import engine


def init_db() -> None:
    """Bring the schema to head before the API, CLI commands or seeding use it."""
    upgrade_database(make_backup=False)


def _alembic_config() -> Config:
    script_location = Path(__file__).resolve().parent / "alembic"

    config = Config()
    config.set_main_option("script_location", str(script_location))
    # Alembic's ConfigParser interpolates '%', which appears in URL-escaped
    # paths such as sqlite:///%3Amemory%3A.
    config.set_main_option("sqlalchemy.url", str(engine.url).replace("%", "%%"))
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the schema and return the actions taken.

    A database holding ``events`` but no ``alembic_version`` was built with
    ``Base.metadata.create_all`` (the test suite does this) and is stamped at
    head instead of migrated. ``make_backup`` copies the SQLite file to
    ``<name>.bak`` first.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions
