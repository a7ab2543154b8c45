"""
Publish CLI command.

Shows the missing required installer slots of a version with their fallback
candidates, fills them from --fallback selections or --auto-fallback, marks
the version published and uploads its manifests.
"""

from typing import Dict, Optional, Tuple

import click

from publisher.src.cli.common import (
    channel_option,
    fail,
    get_cli_store,
    manifest_service,
    print_warnings,
    session_scope,
    success,
)
from publisher.src.services.exceptions import ServiceError, ValidationError
from publisher.src.services.publish_service import PublishPlan, PublishService, slot_key


def parse_fallback_options(
    fallbacks: Tuple[str, ...],
    skips: Tuple[str, ...],
) -> Dict[str, Optional[str]]:
    """
    Turn --fallback SLOT=GUID and --skip SLOT options into publish selections.

    Raises:
        ValidationError: If a --fallback value has no "="
    """
    selections: Dict[str, Optional[str]] = {}
    for value in fallbacks:
        slot, sep, guid = value.partition("=")
        if not sep or not slot or not guid:
            raise ValidationError(
                f"Invalid --fallback '{value}'. Expected os/arch/type=bld_...",
                field="fallback",
                value=value,
            )
        selections[slot.strip()] = guid.strip()
    for slot in skips:
        selections[slot.strip()] = None
    return selections


def _print_plan(plan: PublishPlan) -> None:
    if plan.complete:
        click.echo("All required installer slots are covered.")
        return
    click.echo(click.style(f"Missing {len(plan.missing)} required slot(s):", fg="yellow"))
    for slot_plan in plan.missing:
        click.echo(f"  {slot_key(slot_plan.slot)}")
        if not slot_plan.candidates:
            click.echo("    (no fallback candidates in this channel)")
        for candidate in slot_plan.candidates:
            click.echo(f"    {candidate.build.guid}  {candidate.label}")


@click.command("publish")
@click.argument("version_name")
@channel_option
@click.option(
    "--fallback",
    "fallbacks",
    multiple=True,
    metavar="SLOT=GUID",
    help="Fill a missing slot (os/arch/type) with a build from another version.",
)
@click.option("--skip", "skips", multiple=True, metavar="SLOT", help="Leave a missing slot empty.")
@click.option("--auto-fallback", is_flag=True, default=False,
              help="Use the newest candidate for slots without a --fallback or --skip.")
@click.option("--dry-run", is_flag=True, default=False, help="Only show the missing slots and candidates.")
@click.pass_context
def publish(
    ctx: click.Context,
    version_name: str,
    channel: str,
    fallbacks: Tuple[str, ...],
    skips: Tuple[str, ...],
    auto_fallback: bool,
    dry_run: bool,
) -> None:
    """Publish VERSION_NAME and upload its manifests.

    \b
    Examples:
        publisher publish 1.4.0 --dry-run
        publisher publish 1.4.0 --auto-fallback
        publisher publish 1.4.0 --fallback windows/x64/installer=bld_01j... --skip linux/arm64/installer
    """
    with session_scope(ctx) as db:
        service = PublishService(db, get_cli_store(ctx), manifest_service(ctx, db))
        try:
            selections = parse_fallback_options(fallbacks, skips)
            plan = service.plan(version_name, channel)
            _print_plan(plan)
            if dry_run:
                return
            result = service.publish(
                version_name,
                channel,
                selections=selections,
                auto_fallback=auto_fallback,
            )
        except ServiceError as e:
            fail(e)

        for build_row in result.assigned:
            click.echo(
                f"  Assigned {build_row.os}/{build_row.arch}/{build_row.type} "
                f"from {build_row.fallback_from}"
            )
        for slot in result.skipped:
            click.echo(click.style(f"  Skipped {slot_key(slot)}", fg="yellow"))
        success(f"Published {version_name} ({channel})")
        for path in result.manifest_paths:
            click.echo(f"  Manifest: {path}")
        print_warnings(result.warnings)
