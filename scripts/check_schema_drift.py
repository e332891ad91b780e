from __future__ import annotations

import logging

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext
from sqlalchemy.exc import SQLAlchemyError

from fairdraw.config import configure_logging
from fairdraw.db.engine import make_engine
from fairdraw.models import Base

logger = logging.getLogger("fairdraw.scripts.check_schema_drift")


def _flatten(ops) -> list:
    flat = []
    for op in ops:
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            flat.extend(_flatten(sub_ops))
        else:
            flat.append(op)
    return flat


def main() -> int:
    """Compare the live schema with the models; exit 0 clean, 1 drift, 2 error."""
    configure_logging()
    engine = make_engine()
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except SQLAlchemyError as exc:
        logger.error("Schema drift check failed for %s: %s", url_display, exc)
        return 2

    if upgrade_ops is None or upgrade_ops.is_empty():
        logger.info("Schema drift check: no differences for %s", url_display)
        return 0

    logger.warning("Schema drift detected for %s:", url_display)
    for op in _flatten(upgrade_ops.ops or []):
        logger.warning("  %s", op.to_diff_tuple() if hasattr(op, "to_diff_tuple") else op)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
