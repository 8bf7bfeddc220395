"""authstore operator CLI.

Prints the DDL for a schema file, creates tables against a live database,
and checks connectivity.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer

from authstore.errors import StorageError
from authstore.models.query import HealthStatus
from authstore.services.adapter import Adapter
from authstore.services.factory import create_adapter, load_models

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="authstore",
    help="""Manage authentication tables in a libSQL database.

Examples:

  # Print the DDL for a schema file
  authstore schema ./auth-schema.json

  # Create every table in a local database
  authstore migrate ./auth-schema.json --url ./auth.db

  # Check a remote database
  authstore health --url libsql://auth.example.turso.io --auth-token $TOKEN""",
    rich_markup_mode="markdown",
)

_URL_OPTION = typer.Option(..., "--url", "-u", envvar="AUTHSTORE_URL", help="Database path or libsql/http(s) URL")
_TOKEN_OPTION = typer.Option(None, "--auth-token", "-t", envvar="AUTHSTORE_AUTH_TOKEN", help="Remote credential")
_SYNC_URL_OPTION = typer.Option(
    None, "--sync-url", envvar="AUTHSTORE_SYNC_URL", help="Remote URL to replicate the local database from"
)
_SYNC_INTERVAL_OPTION = typer.Option(
    None, "--sync-interval", envvar="AUTHSTORE_SYNC_INTERVAL", help="Seconds between replica syncs"
)


def _load_or_exit(schema_file: Path) -> list:
    try:
        return load_models(schema_file)
    except StorageError as e:
        logger.error("schema_file_invalid", schema_file=str(schema_file), error=str(e))
        raise typer.Exit(1)


@app.command()
def schema(
    schema_file: Path = typer.Argument(..., help="JSON file mapping model names to field descriptors"),
    plural: bool = typer.Option(False, "--plural", help="Pluralize table names"),
    numeric_ids: bool = typer.Option(False, "--numeric-ids", help="Use database-assigned integer ids"),
) -> None:
    """Print the CREATE TABLE statements for a schema file."""
    models = _load_or_exit(schema_file)
    adapter = Adapter(
        models,
        config={"url": ":memory:"},
        use_plural=plural,
        use_numeric_ids=numeric_ids,
    )
    code, _path = adapter.create_schema()
    typer.echo(code)


@app.command()
def migrate(
    schema_file: Path = typer.Argument(..., help="JSON file mapping model names to field descriptors"),
    url: str = _URL_OPTION,
    auth_token: Optional[str] = _TOKEN_OPTION,
    sync_url: Optional[str] = _SYNC_URL_OPTION,
    sync_interval: Optional[float] = _SYNC_INTERVAL_OPTION,
    plural: bool = typer.Option(False, "--plural", help="Pluralize table names"),
    numeric_ids: bool = typer.Option(False, "--numeric-ids", help="Use database-assigned integer ids"),
) -> None:
    """Create every table declared in a schema file."""
    models = _load_or_exit(schema_file)

    async def run_migration() -> None:
        async with create_adapter(
            models,
            url=url,
            auth_token=auth_token,
            sync_url=sync_url,
            sync_interval=sync_interval,
            use_plural=plural,
            use_numeric_ids=numeric_ids,
        ) as adapter:
            await adapter.ensure_schema()
            await adapter.connection.sync()

    try:
        asyncio.run(run_migration())
    except StorageError as e:
        logger.error("migration_failed", url=url, error=str(e))
        raise typer.Exit(1)

    typer.echo(f"Ensured {len(models)} tables")


@app.command()
def health(
    url: str = _URL_OPTION,
    auth_token: Optional[str] = _TOKEN_OPTION,
    sync_url: Optional[str] = _SYNC_URL_OPTION,
) -> None:
    """Check that the database answers a trivial query."""

    async def run_check() -> HealthStatus:
        async with create_adapter([], url=url, auth_token=auth_token, sync_url=sync_url) as adapter:
            return await adapter.connection.check_health()

    try:
        status = asyncio.run(run_check())
    except StorageError as e:
        logger.error("health_check_failed", url=url, error=str(e))
        raise typer.Exit(1)

    if not status.healthy:
        logger.error("database_unhealthy", url=url, error=status.error)
        typer.echo(f"Unhealthy: {status.error}")
        raise typer.Exit(1)
    typer.echo("Healthy")


@app.command()
def version() -> None:
    """Show version information."""
    from authstore import __version__

    typer.echo(f"authstore {__version__}")
