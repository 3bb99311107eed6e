"""Alembic bootstrap for databases created before migrations were tracked.

A schema without alembic_version but with `precast_stock.lifecycle_state`
already holds lifecycle states; re-running the backfill would overwrite them
from the legacy flags. Such a schema gets its missing tables created and is
stamped at the backfill revision before the normal upgrade. Everything else
(fresh databases, boolean-flag era imports) runs the whole chain, which is
idempotent up to the backfill.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .database import Base, engine
from . import models  # noqa: F401

logger = logging.getLogger(__name__)

LIFECYCLE_REVISION = "002"
ALEMBIC_INI = Path(os.getenv("ALEMBIC_CONFIG", Path(__file__).resolve().parent.parent / "alembic.ini"))


def baseline_revision(inspector) -> str | None:
    """Revision to stamp before upgrading, or None when the full chain should run."""
    if inspector.has_table("alembic_version"):
        return None
    if not inspector.has_table("precast_stock"):
        return None
    columns = {column["name"] for column in inspector.get_columns("precast_stock")}
    if "lifecycle_state" in columns:
        return LIFECYCLE_REVISION
    return None


def alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return config


def bootstrap_schema(bind=None) -> str | None:
    """Stamp untracked lifecycle-era schemas, then upgrade to head. Returns the stamped revision."""
    bind = bind if bind is not None else engine
    stamp = baseline_revision(inspect(bind))
    config = alembic_config()

    if stamp is not None:
        logger.warning("Existing schema detected without alembic_version. Stamping baseline: %s", stamp)
        Base.metadata.create_all(bind=bind, checkfirst=True)
        command.stamp(config, stamp)
    else:
        logger.info("Alembic bootstrap check: no baseline stamp required")

    command.upgrade(config, "head")
    return stamp


def main() -> int:
    bootstrap_schema()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
