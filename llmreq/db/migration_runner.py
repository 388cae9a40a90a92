"""
Migration Runner - Runs Alembic migrations at application startup.

Enabled with LLMREQ_AUTO_MIGRATE=true; otherwise the app creates missing tables
directly from the ORM metadata.
"""

import logging
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from llmreq.config import settings

logger = logging.getLogger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def get_sync_database_url(url: str | None = None) -> str:
    """Get synchronous database URL for migrations.

    Alembic's command API uses synchronous connections, so async driver names
    are swapped for their blocking counterparts.
    """
    url = url or settings.database_url
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def _get_current_revision(engine: Engine) -> str | None:
    """Get the current database revision."""
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> bool:
    """
    Run pending Alembic migrations.

    Only runs migrations if there are pending ones.

    Returns:
        False if no alembic.ini ships with the install, so nothing was run
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning(f"Alembic config not found at {ALEMBIC_INI_PATH}, skipping migrations")
        return False

    try:
        alembic_cfg = Config(str(ALEMBIC_INI_PATH))

        sync_url = get_sync_database_url()
        alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))

        engine = create_engine(sync_url)

        try:
            current = _get_current_revision(engine)
            head = _get_head_revision(alembic_cfg)

            if current == head:
                logger.info(f"Database schema is up to date (revision: {current})")
                return True

            logger.info(f"Running migrations from {current} to {head}")
            command.upgrade(alembic_cfg, "head")

            new_current = _get_current_revision(engine)
            logger.info(f"Migrations complete. Database now at revision: {new_current}")
            return True

        finally:
            engine.dispose()

    except Exception as e:
        logger.error(f"Migration failed: {e}")
        raise RuntimeError(f"Database migration failed: {e}") from e
