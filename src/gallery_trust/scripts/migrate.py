# src/gallery_trust/scripts/migrate.py
"""Apply Alembic migrations up to head using the configured database."""
from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from gallery_trust.core.settings import settings

PROJECT_ROOT = os.path.join(os.path.dirname(__file__), "..", "..", "..")


def run_upgrade_head() -> None:
    cfg = Config(os.path.join(PROJECT_ROOT, "migrations", "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url_sync)
    script_location = os.path.abspath(os.path.join(PROJECT_ROOT, "migrations"))
    cfg.set_main_option("script_location", script_location)
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    run_upgrade_head()
