"""CLI for Katalyst: run the API, migrate the database, check the environment."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import uvicorn
from dotenv import load_dotenv

from katalyst import __version__
from katalyst.config import Settings
from katalyst.core.logging import configure_logging
from katalyst.db import Database
from katalyst.errors import ConfigError
from katalyst.migrations import run_migrations

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Katalyst: calendar dashboard backend."""
    load_dotenv()


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port")
@click.option("--reload", is_flag=True, help="Restart on code changes (development only)")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the HTTP API."""
    try:
        settings = Settings.load()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(settings.log_level, settings.log_format)
    click.echo(f"Starting Katalyst API on http://{host}:{port} ({settings.environment})")
    uvicorn.run(
        "katalyst.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@cli.command()
@click.option("--chain", default="core", show_default=True, help="Migration chain to apply")
def migrate(chain: str) -> None:
    """Create the database if needed and apply migrations."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_format)
    database = Database.from_env(settings.db_name)
    try:
        asyncio.run(_migrate(database, chain))
    except Exception as exc:
        click.echo(f"Migration failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Database {database.db_name} is up to date ({chain})")


async def _migrate(database: Database, chain: str) -> None:
    await database.provision()
    await run_migrations(database.url, chain=chain)


@cli.command("check-env")
def check_env() -> None:
    """Report required environment variables that are missing."""
    settings = Settings.from_env()
    missing = settings.missing_required()
    if missing:
        click.echo("Missing required environment variables:")
        for name in missing:
            click.echo(f"  {name}")
        sys.exit(1)
    click.echo(f"Environment OK ({settings.environment})")
