"""
Version management CLI commands.

Provides subcommands for the version lifecycle:
- create: Create an unpublished version with its rollout policy
- list: List versions with their resolved policy
- policy: Change the rollout policy or move a version to another channel
- delete: Delete a version and its builds
"""

from typing import Optional

import click

from publisher.src.cli.common import (
    channel_option,
    fail,
    manifest_service,
    print_warnings,
    session_scope,
    success,
)
from publisher.src.services.exceptions import ServiceError
from publisher.src.services.policy import resolve_policy
from publisher.src.services.version_service import VersionService


@click.group("version")
def version() -> None:
    """Create, list, update and delete versions.

    \b
    Examples:
        publisher version create 1.4.0 --channel beta --rollout 25
        publisher version list --published
        publisher version policy 1.4.0 --channel beta --target-channel stable
        publisher version delete 1.3.0 --force --yes
    """
    pass


def _format_policy(version_row) -> str:
    policy = resolve_policy(version_row)
    parts = [f"rollout {policy.rollout_percentage}%"]
    if policy.min_supported_version:
        parts.append(f"min {policy.min_supported_version}")
    if policy.rollout_start_at or policy.rollout_end_at:
        parts.append(f"window {policy.rollout_start_at or '-'} .. {policy.rollout_end_at or '-'}")
    return ", ".join(parts)


@version.command("create")
@click.argument("version_name")
@channel_option
@click.option("--min-supported", default=None, help="Installed versions below this must update.")
@click.option("--rollout", type=float, default=None, help="Rollout percentage (0-100, default 100).")
@click.option("--rollout-start", default=None, help="ISO-8601 start of the rollout window.")
@click.option("--rollout-end", default=None, help="ISO-8601 end of the rollout window.")
@click.option("--notes", default=None, help="Release notes.")
@click.option("--changelog", default=None, help="Changelog text.")
@click.option("--mandatory", is_flag=True, default=False, help="Force every eligible client to update.")
@click.pass_context
def create(
    ctx: click.Context,
    version_name: str,
    channel: str,
    min_supported: Optional[str],
    rollout: Optional[float],
    rollout_start: Optional[str],
    rollout_end: Optional[str],
    notes: Optional[str],
    changelog: Optional[str],
    mandatory: bool,
) -> None:
    """Create an unpublished version.

    VERSION_NAME must be a semantic version (e.g. 1.4.0 or 2.0.0-beta.1).
    """
    with session_scope(ctx) as db:
        service = VersionService(db, manifests=manifest_service(ctx, db))
        try:
            created = service.create_version(
                version_name,
                channel=channel,
                min_supported_version=min_supported,
                rollout_percentage=rollout,
                rollout_start_at=rollout_start,
                rollout_end_at=rollout_end,
                release_notes=notes,
                changelog=changelog,
                is_mandatory=mandatory,
            )
        except ServiceError as e:
            fail(e)

        success(f"Created version {created.version_name} ({created.release_channel})")
        click.echo(f"  GUID:    {created.guid}")
        click.echo(f"  Prefix:  {created.storage_key_prefix}")
        click.echo(f"  Policy:  {_format_policy(created)}")


@version.command("list")
@click.option("--channel", "-c", default=None, help="Only this channel (default: all).")
@click.option("--published", is_flag=True, default=False, help="Only published versions.")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--offset", type=int, default=0, show_default=True)
@click.pass_context
def list_versions(
    ctx: click.Context,
    channel: Optional[str],
    published: bool,
    limit: int,
    offset: int,
) -> None:
    """List versions, newest created first."""
    with session_scope(ctx) as db:
        service = VersionService(db, manifests=manifest_service(ctx, db))
        try:
            versions, total = service.list_versions(
                channel=channel,
                published_only=published,
                limit=limit,
                offset=offset,
            )
        except ServiceError as e:
            fail(e)

        if not versions:
            click.echo("No versions found.")
            return

        for row in versions:
            state = click.style("published", fg="green") if row.is_published else click.style("draft", fg="yellow")
            mandatory = " mandatory" if row.is_mandatory else ""
            click.echo(
                f"{row.version_name:<20} {row.release_channel:<8} {state}{mandatory}  "
                f"{_format_policy(row)}  ({len(row.builds)} builds)"
            )
        click.echo(f"\nShowing {len(versions)} of {total} version(s)")


@version.command("policy")
@click.argument("version_name")
@channel_option
@click.option("--target-channel", default=None, help="Move the version to this channel.")
@click.option("--min-supported", default=None, help="New minimum supported version.")
@click.option("--clear-min-supported", is_flag=True, default=False)
@click.option("--rollout", type=float, default=None, help="New rollout percentage (0-100).")
@click.option("--rollout-start", default=None, help="New ISO-8601 window start.")
@click.option("--clear-rollout-start", is_flag=True, default=False)
@click.option("--rollout-end", default=None, help="New ISO-8601 window end.")
@click.option("--clear-rollout-end", is_flag=True, default=False)
@click.option("--mandatory/--not-mandatory", default=None, help="Change the mandatory flag.")
@click.pass_context
def policy(
    ctx: click.Context,
    version_name: str,
    channel: str,
    target_channel: Optional[str],
    min_supported: Optional[str],
    clear_min_supported: bool,
    rollout: Optional[float],
    rollout_start: Optional[str],
    clear_rollout_start: bool,
    rollout_end: Optional[str],
    clear_rollout_end: bool,
    mandatory: Optional[bool],
) -> None:
    """Update the rollout policy of a version.

    Options that are not given keep their current value.
    """
    updates = {}
    if clear_min_supported:
        updates["min_supported_version"] = None
    elif min_supported is not None:
        updates["min_supported_version"] = min_supported
    if rollout is not None:
        updates["rollout_percentage"] = rollout
    if clear_rollout_start:
        updates["rollout_start_at"] = None
    elif rollout_start is not None:
        updates["rollout_start_at"] = rollout_start
    if clear_rollout_end:
        updates["rollout_end_at"] = None
    elif rollout_end is not None:
        updates["rollout_end_at"] = rollout_end

    with session_scope(ctx) as db:
        service = VersionService(db, manifests=manifest_service(ctx, db))
        try:
            updated = service.set_policy(
                version_name,
                channel,
                target_channel=target_channel,
                is_mandatory=mandatory,
                **updates,
            )
        except ServiceError as e:
            fail(e)

        success(f"Updated {updated.version_name} ({updated.release_channel})")
        click.echo(f"  Policy:  {_format_policy(updated)}")
        if updated.is_published:
            click.echo(
                "  Run 'publisher manifest generate "
                f"{updated.version_name} --channel {updated.release_channel}' to refresh manifests."
            )


@version.command("delete")
@click.argument("version_name")
@channel_option
@click.option("--force", is_flag=True, default=False, help="Delete even if published or used as a fallback.")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def delete(ctx: click.Context, version_name: str, channel: str, force: bool, yes: bool) -> None:
    """Delete a version, its builds and its stored artifacts."""
    if not yes:
        click.confirm(f"Delete version {version_name} ({channel}) and all its builds?", abort=True)

    with session_scope(ctx) as db:
        manifests = manifest_service(ctx, db)
        service = VersionService(db, store=manifests.store, manifests=manifests)
        try:
            result = service.delete_version(version_name, channel, force=force)
        except ServiceError as e:
            fail(e)

        for item in result.deleted:
            success(f"Deleted {item}")
        if result.overridden_conflicts:
            click.echo(click.style("Overridden fallback references:", fg="yellow"))
            for conflict in result.overridden_conflicts:
                click.echo(f"  - {conflict}")
        print_warnings(result.warnings)
