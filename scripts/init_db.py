from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import inspect

from fairdraw.config import ROOT_DIR, configure_logging
from fairdraw.db.engine import make_engine

logger = logging.getLogger("fairdraw.scripts.init_db")

CONTEST_TABLES = (
    "contests",
    "contest_participants",
    "contest_prize_tiers",
    "contest_prizes",
    "contest_audit_log",
)


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def report_schema() -> int:
    """Log the current revision and return 1 if any contest table is missing."""
    engine = make_engine()
    with engine.connect() as connection:
        revision = MigrationContext.configure(connection).get_current_revision()
    tables = set(inspect(engine).get_table_names())
    missing = [name for name in CONTEST_TABLES if name not in tables]
    logger.info("Database at revision %s with tables: %s", revision, ", ".join(sorted(tables)))
    if missing:
        logger.error("Missing contest tables: %s", ", ".join(missing))
        return 1
    return 0


def main() -> int:
    """Apply migrations (default to head) and verify the contest schema exists."""
    configure_logging()
    upgrade_db()
    return report_schema()


if __name__ == "__main__":
    raise SystemExit(main())
