"""
Manifest CLI commands.

- generate: Rebuild and upload the manifests of a version
- show: Print a manifest built from the database, or the uploaded copy
"""

import click

from publisher.src.cli.common import (
    channel_option,
    fail,
    get_cli_store,
    manifest_service,
    session_scope,
    success,
)
from publisher.src.services.exceptions import ServiceError
from publisher.src.services.manifest_service import channel_manifest_path


@click.group("manifest")
def manifest() -> None:
    """Generate and inspect update manifests."""
    pass


@manifest.command("generate")
@click.argument("version_name")
@channel_option
@click.pass_context
def generate(ctx: click.Context, version_name: str, channel: str) -> None:
    """Regenerate the manifest of VERSION_NAME.

    The channel manifest is regenerated too when the version is published.
    """
    with session_scope(ctx) as db:
        try:
            paths = manifest_service(ctx, db).regenerate(version_name, channel)
        except ServiceError as e:
            fail(e)

        for path in paths:
            success(f"Wrote {path}")


@manifest.command("show")
@click.argument("version_name", required=False)
@channel_option
@click.option("--stored", is_flag=True, help="Print the uploaded manifest instead of rebuilding it.")
@click.pass_context
def show(ctx: click.Context, version_name: str, channel: str, stored: bool) -> None:
    """Print a manifest as JSON.

    Without VERSION_NAME, prints the channel manifest. With --stored, prints
    the copy currently in the blob store, which lags the database until the
    next regeneration.
    """
    with session_scope(ctx) as db:
        service = manifest_service(ctx, db)
        try:
            if stored:
                if version_name:
                    path = service.get_version(version_name, channel).manifest_path
                else:
                    path = channel_manifest_path(channel)
                click.echo(get_cli_store(ctx).read(path).decode("utf-8"))
                return
            if version_name:
                document = service.build_version_manifest(version_name, channel)
            else:
                document = service.build_latest_manifest(channel)
        except ServiceError as e:
            fail(e)

        click.echo(document.serialize().decode("utf-8"))
