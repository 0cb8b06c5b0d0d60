"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import URL, make_url

from alembic import command
from alembic.config import Config


def upgrade_head(url: str | URL) -> None:
    """Apply Alembic migrations up to head for the given store URL."""

    root_dir = Path(__file__).resolve().parents[3]
    alembic_ini = root_dir / "alembic.ini"
    alembic_dir = root_dir / "alembic"

    rendered = make_url(url).render_as_string(hide_password=False)
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(alembic_dir))
    # ConfigParser interpolation treats "%" as a directive.
    config.set_main_option("sqlalchemy.url", rendered.replace("%", "%%"))
    command.upgrade(config, "head")
