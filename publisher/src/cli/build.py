"""
Build management CLI commands.

Provides subcommands for the build registry of a version:
- upload: Upload a package file (direct distribution)
- create: Register a build hosted elsewhere (store listing or external URL)
- list: List the builds of a version
- delete: Delete the builds of a slot
"""

from typing import Optional

import click

from publisher.src.cli.common import (
    channel_option,
    fail,
    get_cli_settings,
    get_cli_store,
    manifest_service,
    print_warnings,
    session_scope,
    success,
)
from publisher.src.models.types import (
    SUPPORTED_ARCH,
    SUPPORTED_BUILD_TYPES,
    SUPPORTED_DISTRIBUTIONS,
    SUPPORTED_OS,
)
from publisher.src.services.build_service import BuildService
from publisher.src.services.exceptions import ServiceError
from publisher.src.services.source_selector import resolve_distribution


@click.group("build")
def build() -> None:
    """Upload, register, list and delete builds.

    \b
    Examples:
        publisher build upload 1.4.0 dist/app-1.4.0-arm64-macos.dmg
        publisher build create 1.4.0 --os ios --arch arm64 --type installer --url https://apps.apple.com/app/id1
        publisher build list 1.4.0
        publisher build delete 1.4.0 --os macos --arch arm64 --type installer --yes
    """
    pass


def _build_service(ctx: click.Context, db) -> BuildService:
    return BuildService(
        db,
        get_cli_store(ctx),
        settings=get_cli_settings(ctx),
        manifests=manifest_service(ctx, db),
    )


def _describe(build_row) -> str:
    distribution = resolve_distribution(build_row.distribution, build_row.platform_metadata)
    line = f"{build_row.os}/{build_row.arch}/{build_row.type} [{distribution}"
    if build_row.variant != "default":
        line += f", {build_row.variant}"
    return line + "]"


@build.command("upload")
@click.argument("version_name")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@channel_option
@click.option("--os", "os_name", type=click.Choice(SUPPORTED_OS), default=None, help="Override the parsed OS.")
@click.option("--arch", type=click.Choice(SUPPORTED_ARCH), default=None, help="Override the parsed architecture.")
@click.option("--type", "build_type", type=click.Choice(SUPPORTED_BUILD_TYPES), default=None,
              help="Override the type inferred from the extension.")
@click.option("--distribution", type=click.Choice(SUPPORTED_DISTRIBUTIONS), default="direct", show_default=True)
@click.option("--variant", default=None, help="Build variant (default: default).")
@click.pass_context
def upload(
    ctx: click.Context,
    version_name: str,
    file_path: str,
    channel: str,
    os_name: Optional[str],
    arch: Optional[str],
    build_type: Optional[str],
    distribution: str,
    variant: Optional[str],
) -> None:
    """Upload FILE_PATH as a build of VERSION_NAME.

    OS, architecture and type are parsed from names like
    {prefix}-{version}-{arch}-{os}.{ext} unless given explicitly.
    """
    with session_scope(ctx) as db:
        try:
            result = _build_service(ctx, db).upload_build(
                version_name,
                file_path,
                channel=channel,
                os=os_name,
                arch=arch,
                build_type=build_type,
                distribution=distribution,
                variant=variant,
            )
        except ServiceError as e:
            fail(e)

        action = "Uploaded" if result.created else "Replaced"
        success(f"{action} {_describe(result.build)} for {version_name} ({channel})")
        click.echo(f"  URL:     {result.build.url}")
        click.echo(f"  Size:    {result.build.size:,} bytes")
        click.echo(f"  SHA-256: {result.build.sha256_checksum}")
        print_warnings(result.warnings)


@build.command("create")
@click.argument("version_name")
@channel_option
@click.option("--os", "os_name", type=click.Choice(SUPPORTED_OS), required=True)
@click.option("--arch", type=click.Choice(SUPPORTED_ARCH), required=True)
@click.option("--type", "build_type", type=click.Choice(SUPPORTED_BUILD_TYPES), required=True)
@click.option("--url", required=True, help="Download or store listing URL.")
@click.option("--size", type=int, default=0, show_default=True)
@click.option("--sha256", default=None)
@click.option("--sha512", default=None)
@click.option("--package-name", default=None, help="Default: {os}-{arch}-{type}-external.")
@click.option("--distribution", type=click.Choice(SUPPORTED_DISTRIBUTIONS), default="store", show_default=True)
@click.option("--variant", default=None)
@click.pass_context
def create(
    ctx: click.Context,
    version_name: str,
    channel: str,
    os_name: str,
    arch: str,
    build_type: str,
    url: str,
    size: int,
    sha256: Optional[str],
    sha512: Optional[str],
    package_name: Optional[str],
    distribution: str,
    variant: Optional[str],
) -> None:
    """Register a build hosted outside the blob store."""
    with session_scope(ctx) as db:
        try:
            result = _build_service(ctx, db).create_build(
                version_name,
                os=os_name,
                arch=arch,
                build_type=build_type,
                url=url,
                channel=channel,
                size=size,
                sha256=sha256,
                sha512=sha512,
                package_name=package_name,
                distribution=distribution,
                variant=variant,
            )
        except ServiceError as e:
            fail(e)

        action = "Registered" if result.created else "Updated"
        success(f"{action} {_describe(result.build)} for {version_name} ({channel})")
        click.echo(f"  GUID:    {result.build.guid}")
        print_warnings(result.warnings)


@build.command("list")
@click.argument("version_name")
@channel_option
@click.pass_context
def list_builds(ctx: click.Context, version_name: str, channel: str) -> None:
    """List the builds of a version."""
    with session_scope(ctx) as db:
        try:
            builds = _build_service(ctx, db).list_builds(version_name, channel)
        except ServiceError as e:
            fail(e)

        if not builds:
            click.echo(f"No builds for {version_name} ({channel}).")
            return

        for row in builds:
            line = f"{_describe(row):<40} {row.package_name}  {row.size:,} bytes  {row.guid}"
            if row.fallback_from:
                line += click.style(f"  (fallback from {row.fallback_from})", fg="cyan")
            click.echo(line)


@build.command("delete")
@click.argument("version_name")
@channel_option
@click.option("--os", "os_name", required=True)
@click.option("--arch", required=True)
@click.option("--type", "build_type", required=True)
@click.option("--distribution", default=None, help="Only builds with this distribution.")
@click.option("--variant", default=None, help="Only builds with this variant.")
@click.option("--force", is_flag=True, default=False, help="Delete even if other versions fall back to it.")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def delete(
    ctx: click.Context,
    version_name: str,
    channel: str,
    os_name: str,
    arch: str,
    build_type: str,
    distribution: Optional[str],
    variant: Optional[str],
    force: bool,
    yes: bool,
) -> None:
    """Delete the builds of an os/arch/type slot."""
    if not yes:
        click.confirm(
            f"Delete {os_name}/{arch}/{build_type} builds of {version_name} ({channel})?",
            abort=True,
        )

    with session_scope(ctx) as db:
        try:
            result = _build_service(ctx, db).delete_build(
                version_name,
                os_name,
                arch,
                build_type,
                channel=channel,
                distribution=distribution,
                variant=variant,
                force=force,
            )
        except ServiceError as e:
            fail(e)

        for item in result.deleted:
            success(f"Deleted {item}")
        if result.overridden_conflicts:
            click.echo(click.style("Overridden fallback references:", fg="yellow"))
            for conflict in result.overridden_conflicts:
                click.echo(f"  - {conflict}")
        print_warnings(result.warnings)
