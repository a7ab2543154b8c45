"""
Shared helpers for CLI commands.

Commands read their collaborators from the click context object so tests
can inject a session factory, blob store and settings:

    runner.invoke(cli, [...], obj={"session_factory": Session, "store": store})
"""

import sys
from contextlib import contextmanager
from typing import Iterable, Iterator

import click
from sqlalchemy.orm import Session

from publisher.src.config.settings import AppSettings, get_settings
from publisher.src.models.types import DEFAULT_CHANNEL
from publisher.src.services.exceptions import ConflictError, ServiceError
from publisher.src.services.manifest_service import ManifestService
from publisher.src.storage import BlobStore, get_blob_store


def get_cli_settings(ctx: click.Context) -> AppSettings:
    obj = ctx.ensure_object(dict)
    if obj.get("settings") is None:
        obj["settings"] = get_settings()
    return obj["settings"]


def get_cli_store(ctx: click.Context) -> BlobStore:
    """Blob store from the context, created from settings on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get("store") is None:
        obj["store"] = get_blob_store(get_cli_settings(ctx))
    return obj["store"]


@contextmanager
def session_scope(ctx: click.Context) -> Iterator[Session]:
    """Open a database session for the duration of a command."""
    factory = ctx.ensure_object(dict).get("session_factory")
    if factory is None:
        from publisher.src.db.database import SessionLocal
        factory = SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()


def manifest_service(ctx: click.Context, db: Session) -> ManifestService:
    return ManifestService(db, get_cli_store(ctx), get_cli_settings(ctx))


def fail(error: Exception) -> None:
    """Print an error (and any conflicts) in red and exit with status 1."""
    message = error.message if isinstance(error, ServiceError) else str(error)
    click.echo(click.style("Error: ", fg="red", bold=True) + message)
    if isinstance(error, ConflictError):
        for conflict in error.conflicts:
            click.echo(click.style(f"  - {conflict}", fg="red"))
    sys.exit(1)


def print_warnings(warnings: Iterable[str]) -> None:
    for warning in warnings:
        click.echo(click.style("Warning: ", fg="yellow", bold=True) + warning)


def success(message: str) -> None:
    click.echo(click.style(message, fg="green", bold=True))


channel_option = click.option(
    "--channel",
    "-c",
    default=DEFAULT_CHANNEL,
    show_default=True,
    help="Release channel (stable, beta, alpha).",
)
