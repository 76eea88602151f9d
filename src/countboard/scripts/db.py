# src/countboard/scripts/db.py
"""Create or migrate the counter store from the command line."""
from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path

from alembic import command
from alembic.config import Config

from countboard.core.settings import settings
from countboard.db.session import create_tables

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def alembic_config() -> Config:
    """Return an Alembic config pointed at the checkout's migrations."""
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url_sync)
    return cfg


def run_upgrade_head() -> None:
    command.upgrade(alembic_config(), "head")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "action",
        choices=["upgrade", "create-tables"],
        help="'upgrade' applies Alembic migrations; 'create-tables' skips them",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper())

    if args.action == "upgrade":
        logger.info("Upgrading schema to head")
        run_upgrade_head()
    else:
        create_tables()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
