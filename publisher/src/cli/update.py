"""
Update check CLI command.

Evaluates, from the publisher's side, what a client with the given
installed version and platform would be offered.
"""

import json
from typing import Optional

import click

from publisher.src.cli.common import channel_option, fail, session_scope
from publisher.src.services.exceptions import ServiceError
from publisher.src.services.update_service import UpdateService


@click.group("update")
def update() -> None:
    """Inspect update eligibility."""
    pass


@update.command("check")
@click.option("--installed", "installed_version", required=True, help="Installed client version.")
@click.option("--os", "os_name", required=True)
@click.option("--arch", required=True)
@channel_option
@click.option("--device-id", default=None, help="Device identifier used for percentage rollouts.")
@click.option("--allow-prerelease", is_flag=True, default=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the raw check result.")
@click.pass_context
def check(
    ctx: click.Context,
    installed_version: str,
    os_name: str,
    arch: str,
    channel: str,
    device_id: Optional[str],
    allow_prerelease: bool,
    as_json: bool,
) -> None:
    """Check whether an update is available for a client.

    \b
    Examples:
        publisher update check --installed 1.2.0 --os macos --arch arm64
        publisher update check --installed 1.2.0 --os windows --arch x64 --channel beta --device-id abc --json
    """
    with session_scope(ctx) as db:
        try:
            result = UpdateService(db).check_for_update(
                installed_version,
                os_name,
                arch,
                channel=channel,
                device_id=device_id,
                allow_prerelease=allow_prerelease,
            )
        except ServiceError as e:
            fail(e)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.update_available:
        click.echo(f"No update available for {installed_version} on {os_name}/{arch} ({channel}).")
        return

    label = click.style("mandatory", fg="red", bold=True) if result.mandatory else "optional"
    click.echo(f"Update available: {installed_version} -> {result.target_version} ({label})")
    if result.build:
        click.echo(f"  Build: {result.build.type} via {result.build.distribution}")
        click.echo(f"  URL:   {result.build.url}")
