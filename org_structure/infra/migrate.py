from __future__ import annotations

import structlog
from alembic import command
from alembic.config import Config

LOGGER = structlog.get_logger(__name__)


def run_upgrade_head(config_path: str = "alembic.ini") -> None:
    config = Config(config_path)
    LOGGER.info("org.migrate.upgrade_head", config_path=config_path)
    command.upgrade(config, "head")


if __name__ == "__main__":
    run_upgrade_head()
