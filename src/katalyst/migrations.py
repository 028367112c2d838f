"""Programmatic Alembic migration runner for Katalyst.

Lets the CLI and the API lifespan run migrations without shelling out to the
Alembic CLI.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# Root of the alembic directory (sibling to src/)
ALEMBIC_DIR = Path(__file__).resolve().parent.parent.parent / "alembic"

# Version chains living under alembic/versions/
CHAINS = ("core",)


def _resolve_chain_dir(chain: str) -> Path | None:
    """Return ``alembic/versions/<chain>`` if it exists."""
    if chain not in CHAINS:
        return None
    chain_dir = ALEMBIC_DIR / "versions" / chain
    return chain_dir if chain_dir.is_dir() else None


def build_alembic_config(db_url: str) -> Config:
    """Build an Alembic Config pointing at the Katalyst version directories.

    Args:
        db_url: SQLAlchemy-compatible database URL.

    Returns:
        A configured alembic.config.Config instance.
    """
    config = Config(str(ALEMBIC_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # Alembic Config uses configparser interpolation; escape '%' in
    # percent-encoded credentials.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    locations = [str(d) for d in (_resolve_chain_dir(c) for c in CHAINS) if d is not None]
    config.set_main_option("version_locations", os.pathsep.join(locations))
    return config


def _upgrade(db_url: str, chain: str) -> None:
    config = build_alembic_config(db_url)
    logger.info("Running migration chain to head (chain=%s)", chain)
    command.upgrade(config, f"{chain}@head")


async def run_migrations(db_url: str, chain: str = "core") -> None:
    """Upgrade *chain* to head.

    Alembic's online mode is synchronous, so the upgrade runs in a worker
    thread to keep the event loop free.
    """
    if chain not in CHAINS:
        raise ValueError(f"Unknown migration chain: {chain!r}")
    await asyncio.to_thread(_upgrade, db_url, chain)
