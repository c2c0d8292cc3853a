from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from usermgmt.infra.db import DATABASE_URL
from usermgmt.infra.log import configure_logging

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def build_config(database_url: str = DATABASE_URL) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "infra" / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def run_upgrade_head(database_url: str = DATABASE_URL) -> None:
    logger.info("upgrading schema to head")
    command.upgrade(build_config(database_url), "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
